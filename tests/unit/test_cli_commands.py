from __future__ import annotations

import logging
import re
import subprocess
import sys
from typing import TYPE_CHECKING
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from envgroups.cli import app
from envgroups.config import Workspace
from envgroups.config.loader import ConfigError
from envgroups.core.models import GroupVariable, TabType
from envgroups.core.registry import USER_KEY, WindowsRegistryBackend
from envgroups.engine.groups import GroupInput

if TYPE_CHECKING:
    from pathlib import Path

    from envgroups.core.backend import MemoryBackend
    from envgroups.core.store import MemoryStore

    from .conftest import FakeClock

runner = CliRunner()


def _strip_ansi(text: str) -> str:
    return re.sub(r"\x1b\[[0-9;]*m", "", text)


@pytest.fixture
def cli_ws(workspace: Workspace, monkeypatch: pytest.MonkeyPatch) -> Workspace:
    """Route every command to the in-memory workspace fixture."""
    monkeypatch.setattr("envgroups.config.load_settings", MagicMock())
    monkeypatch.setattr("envgroups.config.open_workspace", MagicMock(return_value=workspace))
    return workspace


def _group(ws: Workspace, name: str = "dev", **variables: str) -> str:
    data = GroupInput(
        name=name,
        variables=[GroupVariable(name=k, value=v) for k, v in (variables or {"A": "1"}).items()],
    )
    return ws.groups.create_group(data).id


class _FakeReg:
    """In-memory ``reg.exe`` over the user environment key; names ignore case."""

    def __init__(self, values: dict[str, str]) -> None:
        self.values = dict(values)

    def _key(self, name: str) -> str:
        return next((k for k in self.values if k.lower() == name.lower()), name)

    def __call__(self, cmd: list[str]) -> subprocess.CompletedProcess[str]:
        stdout = ""
        if cmd[:2] == ["reg", "query"]:
            lines = [cmd[2]]
            if cmd[2] == USER_KEY:
                lines += [f"    {k}    REG_SZ    {v}" for k, v in self.values.items()]
            stdout = "\n".join(lines)
        elif cmd[:2] == ["reg", "add"]:
            self.values[self._key(cmd[4])] = cmd[8]
        elif cmd[:2] == ["reg", "delete"]:
            self.values.pop(self._key(cmd[4]), None)
        return subprocess.CompletedProcess(args=cmd, returncode=0, stdout=stdout, stderr="")


class TestVersion:
    def test_version_flag(self) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "envgroups" in result.stdout

    def test_short_version_flag(self) -> None:
        result = runner.invoke(app, ["-V"])
        assert result.exit_code == 0
        assert "envgroups" in result.stdout


class TestGroupsCommands:
    def test_list_empty(self, cli_ws: Workspace) -> None:
        result = runner.invoke(app, ["groups", "list", "--no-color"])
        assert result.exit_code == 0
        assert "No groups found" in result.stdout

    def test_list_reconciles(self, cli_ws: Workspace, backend: MemoryBackend) -> None:
        group_id = _group(cli_ws, "java", JAVA_HOME="/opt/jdk")
        backend.user["JAVA_HOME"] = "/other"

        result = runner.invoke(app, ["groups", "list", "--no-color"])

        assert result.exit_code == 0
        assert "java" in result.stdout
        assert "yes" in result.stdout
        assert cli_ws.groups.get_group(group_id).is_active is True

    def test_list_search_and_system(self, cli_ws: Workspace, backend: MemoryBackend) -> None:
        _group(cli_ws, "java", JAVA_HOME="/opt/jdk")
        _group(cli_ws, "node", NODE_ENV="dev")
        backend.system["COMSPEC"] = "cmd.exe"

        result = runner.invoke(app, ["groups", "list", "-s", "node", "--system", "--no-color"])

        assert "node" in result.stdout
        assert "java" not in result.stdout

        result = runner.invoke(app, ["groups", "list", "--system", "--no-color"])
        assert "COMSPEC" in result.stdout

    def test_create(self, cli_ws: Workspace) -> None:
        result = runner.invoke(
            app, ["groups", "create", "dev", "-e", "A=1", "-e", "B=x=y", "-d", "Local dev"]
        )
        assert result.exit_code == 0, result.output
        assert "Created group 'dev'" in result.stdout

        [group] = cli_ws.groups.load_groups()
        assert [(v.name, v.value) for v in group.variables] == [("A", "1"), ("B", "x=y")]
        assert group.description == "Local dev"

    def test_create_bad_pair(self, cli_ws: Workspace) -> None:
        result = runner.invoke(app, ["groups", "create", "dev", "-e", "NOEQUALS", "--no-color"])
        assert result.exit_code == 1
        assert "Validation failed" in result.output
        assert "KEY=VALUE" in result.output

    def test_create_without_variables(self, cli_ws: Workspace) -> None:
        result = runner.invoke(app, ["groups", "create", "dev", "--no-color"])
        assert result.exit_code == 1
        assert "At least one variable" in result.output

    def test_show(self, cli_ws: Workspace) -> None:
        group_id = _group(cli_ws, "dev", API_URL="http://localhost")
        result = runner.invoke(app, ["groups", "show", group_id, "--no-color"])
        assert result.exit_code == 0
        assert "API_URL" in result.stdout

    def test_show_unknown(self, cli_ws: Workspace) -> None:
        result = runner.invoke(app, ["groups", "show", "group-404", "--no-color"])
        assert result.exit_code == 1
        assert "Not found" in result.output

    def test_edit_merges_variables(self, cli_ws: Workspace) -> None:
        group_id = _group(cli_ws, "dev", A="1", B="2")

        result = runner.invoke(
            app,
            ["groups", "edit", group_id, "--name", "prod", "-e", "A=9", "-e", "C=3", "-r", "B"],
        )

        assert result.exit_code == 0, result.output
        group = cli_ws.groups.get_group(group_id)
        assert group.name == "prod"
        assert [(v.name, v.value) for v in group.variables] == [("A", "9"), ("C", "3")]
        assert len(cli_ws.group_trash.records) == 1

    def test_toggle_activate_deactivate(self, cli_ws: Workspace, backend: MemoryBackend) -> None:
        group_id = _group(cli_ws, "dev", A="1")

        result = runner.invoke(app, ["groups", "toggle", group_id, "--no-color"])
        assert result.exit_code == 0
        assert "activated" in result.stdout
        assert backend.user == {"A": "1"}

        result = runner.invoke(app, ["groups", "activate", group_id, "--no-color"])
        assert "already" in result.stdout

        result = runner.invoke(app, ["groups", "deactivate", group_id, "--no-color"])
        assert "deactivated" in result.stdout
        assert backend.user == {}

    def test_partial_failure_exits_0(self, cli_ws: Workspace, backend: MemoryBackend) -> None:
        group_id = _group(cli_ws, "dev", A="1", B="2")
        backend.fail_writes.add("B")

        result = runner.invoke(app, ["groups", "activate", group_id, "--no-color"])

        assert result.exit_code == 0
        assert "1 variable failed" in result.stdout
        assert "B" in result.stdout

    def test_delete_with_yes(self, cli_ws: Workspace) -> None:
        a = _group(cli_ws, "a")
        b = _group(cli_ws, "b")

        result = runner.invoke(app, ["groups", "delete", a, b, "--yes", "--no-color"])

        assert result.exit_code == 0
        assert "Deleted 2 groups" in result.stdout
        assert cli_ws.groups.load_groups() == []

    def test_delete_declined(self, cli_ws: Workspace) -> None:
        a = _group(cli_ws, "a")

        result = runner.invoke(app, ["groups", "delete", a], input="n\n")

        assert result.exit_code == 1
        assert len(cli_ws.groups.load_groups()) == 1

    def test_delete_only_failures_exits_1(self, cli_ws: Workspace) -> None:
        result = runner.invoke(app, ["groups", "delete", "group-404", "-y", "--no-color"])
        assert result.exit_code == 1
        assert "group-404" in result.stdout


class TestVarsCommands:
    def test_list(self, cli_ws: Workspace, backend: MemoryBackend) -> None:
        backend.user.update({"EDITOR": "vim", "PAGER": "less"})
        result = runner.invoke(app, ["vars", "list", "-s", "vim", "--no-color"])
        assert result.exit_code == 0
        assert "EDITOR" in result.stdout
        assert "PAGER" not in result.stdout

    def test_system(self, cli_ws: Workspace, backend: MemoryBackend) -> None:
        backend.system["OS"] = "Windows_NT"
        result = runner.invoke(app, ["vars", "system", "--no-color"])
        assert result.exit_code == 0
        assert "Windows_NT" in result.stdout

    def test_set_new_then_update(self, cli_ws: Workspace, backend: MemoryBackend) -> None:
        result = runner.invoke(app, ["vars", "set", "EDITOR", "vim", "--no-color"])
        assert "Created EDITOR" in result.stdout
        assert cli_ws.variable_trash.records == []

        result = runner.invoke(app, ["vars", "set", "EDITOR", "nano", "--no-color"])
        assert "Updated EDITOR" in result.stdout
        assert backend.user["EDITOR"] == "nano"
        [record] = cli_ws.variable_trash.records
        assert record.original_data == {"name": "EDITOR", "value": "vim"}

    def test_path_edit(self, cli_ws: Workspace, backend: MemoryBackend) -> None:
        backend.user["PATH"] = "/usr/bin:/opt/old"

        result = runner.invoke(
            app, ["vars", "path", "PATH", "--add", "/opt/new", "--remove", "/opt/old", "--no-color"]
        )

        assert result.exit_code == 0, result.output
        assert backend.user["PATH"] == "/usr/bin:/opt/new"
        assert "/opt/new" in result.stdout

    def test_path_rejects_other_variables(self, cli_ws: Workspace) -> None:
        result = runner.invoke(app, ["vars", "path", "HOME", "--no-color"])
        assert result.exit_code == 1
        assert "not a path list variable" in result.output

    def test_delete(self, cli_ws: Workspace, backend: MemoryBackend) -> None:
        backend.user["TOKEN"] = "abc"
        result = runner.invoke(app, ["vars", "delete", "TOKEN", "--yes", "--no-color"])
        assert result.exit_code == 0
        assert "TOKEN" not in backend.user
        assert len(cli_ws.variable_trash.records) == 1

    def test_path_edit_on_registry_keeps_existing_spelling(
        self, store: MemoryStore, clock: FakeClock, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        reg = _FakeReg({"Path": "C:\\a;C:\\b"})
        ws = Workspace.build(store, WindowsRegistryBackend(reg), clock=clock, path_separator=";")
        monkeypatch.setattr("envgroups.config.load_settings", MagicMock())
        monkeypatch.setattr("envgroups.config.open_workspace", MagicMock(return_value=ws))

        result = runner.invoke(app, ["vars", "path", "PATH", "--add", "C:\\new", "--no-color"])

        assert result.exit_code == 0, result.output
        assert reg.values == {"Path": "C:\\a;C:\\b;C:\\new"}
        [record] = ws.variable_trash.load()
        assert record.original_data == {"name": "Path", "value": "C:\\a;C:\\b"}


class TestTrashCommands:
    def test_list_and_restore(self, cli_ws: Workspace) -> None:
        group_id = _group(cli_ws, "dev")
        cli_ws.groups.delete_group(group_id)
        [record] = cli_ws.group_trash.records

        result = runner.invoke(app, ["trash", "list", "groups", "--no-color"])
        assert result.exit_code == 0
        assert record.id in result.stdout

        result = runner.invoke(app, ["trash", "restore", "groups", record.id, "--no-color"])
        assert result.exit_code == 0
        assert "Restored 'dev'" in result.stdout
        assert cli_ws.groups.get_group(group_id).is_active is False

    def test_list_empty(self, cli_ws: Workspace) -> None:
        result = runner.invoke(app, ["trash", "list", "user-vars"])
        assert result.exit_code == 0
        assert "Trash is empty" in result.stdout

    def test_invalid_tab(self, cli_ws: Workspace) -> None:
        result = runner.invoke(app, ["trash", "list", "bogus"])
        assert result.exit_code == 2

    def test_restore_unknown(self, cli_ws: Workspace) -> None:
        result = runner.invoke(app, ["trash", "restore", "groups", "123-abc", "--no-color"])
        assert result.exit_code == 1
        assert "Not found" in result.output

    def test_restore_failure_keeps_record(self, cli_ws: Workspace) -> None:
        group_id = _group(cli_ws, "dev")
        cli_ws.groups.update_group(
            group_id, GroupInput(name="dev2", variables=[GroupVariable(name="A", value="2")])
        )
        cli_ws.groups.delete_group(group_id)
        edit = next(r for r in cli_ws.group_trash.records if r.action.value == "edit")

        result = runner.invoke(app, ["trash", "restore", "groups", edit.id, "--no-color"])

        assert result.exit_code == 1
        assert "Restore failed" in result.output
        assert cli_ws.group_trash.get(edit.id) == edit

    def test_delete_record(self, cli_ws: Workspace) -> None:
        group_id = _group(cli_ws, "dev")
        cli_ws.groups.delete_group(group_id)
        [record] = cli_ws.group_trash.records

        result = runner.invoke(app, ["trash", "delete", "groups", record.id])

        assert result.exit_code == 0
        assert cli_ws.group_trash.count() == 0

    def test_settings_and_clean(self, cli_ws: Workspace, clock: FakeClock) -> None:
        group_id = _group(cli_ws, "dev")
        cli_ws.groups.delete_group(group_id)
        clock.advance(days=10)

        result = runner.invoke(app, ["trash", "settings", "groups", "--days", "7"])
        assert "kept 7 days" in result.stdout
        assert cli_ws.trash(TabType.GROUPS).settings.auto_cleanup_days == 7

        result = runner.invoke(app, ["trash", "clean", "groups"])
        assert "Removed 1 record" in result.stdout

    def test_settings_rejects_zero(self, cli_ws: Workspace) -> None:
        result = runner.invoke(app, ["trash", "settings", "groups", "--days", "0", "--no-color"])
        assert result.exit_code == 1
        assert "Validation failed" in result.output


class TestErrors:
    def test_config_error_exits_1(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(
            "envgroups.config.load_settings", MagicMock(side_effect=ConfigError("bad config"))
        )
        result = runner.invoke(app, ["groups", "list", "--no-color"])
        assert result.exit_code == 1
        assert "Configuration error" in result.output

    def test_no_backend(self, tmp_path: Path) -> None:
        config = tmp_path / "config.yaml"
        config.write_text(f"data_dir: {tmp_path}\nbackend: none\n")

        result = runner.invoke(app, ["-c", str(config), "vars", "list", "--no-color"])

        assert result.exit_code == 1
        assert "No environment backend" in _strip_ansi(result.output)


class TestEndToEnd:
    def test_dotenv_round_trip(self, tmp_path: Path) -> None:
        config = tmp_path / "config.yaml"
        config.write_text(f"data_dir: {tmp_path}\nbackend: dotenv\n")
        base = ["-c", str(config)]

        result = runner.invoke(
            app, [*base, "groups", "create", "java", "-e", "EG_E2E_HOME=/opt/jdk"]
        )
        assert result.exit_code == 0, result.output
        group_id = re.search(r"\((group-[\w-]+)\)", result.stdout).group(1)

        result = runner.invoke(app, [*base, "groups", "activate", group_id, "--no-color"])
        assert result.exit_code == 0, result.output
        assert 'EG_E2E_HOME="/opt/jdk"' in (tmp_path / "user.env").read_text()

        result = runner.invoke(app, [*base, "groups", "delete", group_id, "-y", "--no-color"])
        assert result.exit_code == 0, result.output
        assert "EG_E2E_HOME" not in (tmp_path / "user.env").read_text()

        result = runner.invoke(app, [*base, "trash", "list", "groups", "--no-color"])
        assert "java" in result.stdout


@pytest.fixture(autouse=False)
def _reset_pkg_logger():
    """Reset the envgroups logger level after each logging test."""
    yield
    logging.getLogger("envgroups").setLevel(logging.NOTSET)


@pytest.mark.usefixtures("_reset_pkg_logger")
class TestConfigureLogging:
    """Unit-test ``_configure_logging`` with ``logging.basicConfig`` mocked out.

    Pytest's logging plugin owns the root logger handlers, so the tests only
    assert the call args and the level of the ``envgroups`` logger.
    """

    @patch("logging.basicConfig")
    def test_verbose_flag_configures_info(self, mock_bc: MagicMock) -> None:
        from envgroups.cli import _LOG_FORMAT, _configure_logging

        _configure_logging(1)
        mock_bc.assert_called_once_with(
            level=logging.WARNING,
            format=_LOG_FORMAT,
            stream=sys.stderr,
            force=True,
        )
        assert logging.getLogger("envgroups").level == logging.INFO

    @patch("logging.basicConfig")
    def test_double_verbose_configures_debug(self, mock_bc: MagicMock) -> None:
        from envgroups.cli import _configure_logging

        _configure_logging(2)
        mock_bc.assert_called_once()
        assert logging.getLogger("envgroups").level == logging.DEBUG

    @patch("logging.basicConfig")
    def test_no_verbose_stays_unconfigured(self, mock_bc: MagicMock) -> None:
        from envgroups.cli import _configure_logging

        _configure_logging(0)
        mock_bc.assert_not_called()

    @patch("logging.basicConfig")
    def test_env_var_overrides_verbose(
        self, mock_bc: MagicMock, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        from envgroups.cli import _configure_logging

        monkeypatch.setenv("ENVGROUPS_LOG", "warning")
        _configure_logging(2)
        mock_bc.assert_called_once()
        assert logging.getLogger("envgroups").level == logging.WARNING

    @patch("logging.basicConfig")
    def test_invalid_env_level_warns_and_defaults_to_info(
        self,
        mock_bc: MagicMock,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        from envgroups.cli import _configure_logging

        monkeypatch.setenv("ENVGROUPS_LOG", "chatty")
        _configure_logging(0)
        mock_bc.assert_called_once()
        assert logging.getLogger("envgroups").level == logging.INFO
        assert "invalid ENVGROUPS_LOG level" in capsys.readouterr().err
