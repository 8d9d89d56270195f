"""Tests for Power BI Desktop instance discovery."""

import io
from pathlib import Path
from unittest.mock import patch

import pytest
from dotenv import dotenv_values
from rich.console import Console

from pbi_local_mcp import discovery
from pbi_local_mcp.exceptions import ConfigurationError, EngineError

from conftest import FakeSession


def make_workspace(root: Path, name: str, port, in_data_dir: bool = False, encoding: str = "utf-16") -> Path:
    workspace = root / name
    target = workspace / "Data" if in_data_dir else workspace
    target.mkdir(parents=True)
    if port is not None:
        (target / "msmdsrv.port.txt").write_bytes(str(port).encode(encoding))
    return workspace


def session_factory_for(catalogs_by_port):
    """Session factory answering the catalog DMV per port."""
    sessions = []

    def factory(connection_string):
        port = int(connection_string.rsplit(":", 1)[1])
        session = FakeSession(connection_string)
        catalogs = catalogs_by_port.get(port, [])
        if isinstance(catalogs, BaseException):
            session.open_error = catalogs
        else:
            session.handler = lambda text: [{"CATALOG_NAME": name} for name in catalogs]
        sessions.append(session)
        return session

    factory.sessions = sessions
    return factory


class TestWorkspaceScan:

    def test_default_roots(self):
        roots = discovery.default_workspace_roots({"LOCALAPPDATA": "/local", "USERPROFILE": "/home/u"})

        assert roots == [
            Path("/local/Microsoft/Power BI Desktop/AnalysisServicesWorkspaces"),
            Path("/local/Packages/Microsoft.MicrosoftPowerBIDesktop_8wekyb3d8bbwe/LocalState/AnalysisServicesWorkspaces"),
            Path("/home/u/Microsoft/Power BI Desktop Store App/AnalysisServicesWorkspaces"),
        ]
        assert discovery.default_workspace_roots({}) == []

    def test_finds_port_files(self, tmp_path):
        make_workspace(tmp_path, "AnalysisServicesWorkspace_1", 52184)
        make_workspace(tmp_path, "AnalysisServicesWorkspace_2", 52190, in_data_dir=True)
        make_workspace(tmp_path, "AnalysisServicesWorkspace_3", 52195, encoding="utf-8")
        make_workspace(tmp_path, "AnalysisServicesWorkspace_empty", None)
        make_workspace(tmp_path, "SomethingElse", 60000)

        instances = discovery.find_workspace_ports([tmp_path, tmp_path / "missing"])

        assert sorted(i.port for i in instances) == [52184, 52190, 52195]

    def test_unreadable_port_files_are_skipped(self, tmp_path):
        make_workspace(tmp_path, "AnalysisServicesWorkspace_a", "not-a-port")
        make_workspace(tmp_path, "AnalysisServicesWorkspace_b", 99999)

        assert discovery.find_workspace_ports([tmp_path]) == []


class TestCatalogs:

    def test_discover_skips_empty_and_unreachable_ports(self, tmp_path):
        make_workspace(tmp_path, "AnalysisServicesWorkspace_1", 52184)
        make_workspace(tmp_path, "AnalysisServicesWorkspace_2", 52190)
        make_workspace(tmp_path, "AnalysisServicesWorkspace_3", 52195)
        factory = session_factory_for({
            52184: ["Sales Model"],
            52190: [],
            52195: EngineError("A connection cannot be made."),
        })

        instances = discovery.discover_instances([tmp_path], factory)

        assert [(i.port, i.catalogs) for i in instances] == [(52184, ["Sales Model"])]
        assert all(session.close_count == 1 for session in factory.sessions)
        assert factory.sessions[0].executed[0][0] == "DMV"

    def test_first_catalog(self):
        factory = session_factory_for({52184: ["A", "B"], 52190: []})

        assert discovery.first_catalog(52184, factory) == "A"
        with pytest.raises(ConfigurationError):
            discovery.first_catalog(52190, factory)


class TestSettings:

    def test_write_settings(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("LOG_LEVEL=DEBUG\nPBI_PORT=1\n", encoding="utf-8")

        discovery.write_settings(52184, "Sales Model", str(env_file))

        values = dotenv_values(env_file)
        assert values["PBI_PORT"] == "52184"
        assert values["PBI_DB_ID"] == "Sales Model"
        assert values["LOG_LEVEL"] == "DEBUG"

    def test_write_settings_creates_file(self, tmp_path):
        env_file = tmp_path / "new.env"

        discovery.write_settings(52184, "Model", str(env_file))

        assert dotenv_values(env_file)["PBI_PORT"] == "52184"

    def test_write_settings_validates(self, tmp_path):
        with pytest.raises(ConfigurationError):
            discovery.write_settings(0, "Model", str(tmp_path / ".env"))


class TestInteractive:

    def console(self):
        return Console(file=io.StringIO(), width=120)

    def test_single_instance_is_selected_without_prompt(self, tmp_path):
        make_workspace(tmp_path, "AnalysisServicesWorkspace_1", 52184)
        env_file = tmp_path / ".env"

        with patch("pbi_local_mcp.discovery.questionary.select") as select:
            endpoint = discovery.run_interactive(
                str(env_file), [tmp_path], session_factory_for({52184: ["Model"]}), self.console()
            )

        select.assert_not_called()
        assert (endpoint.port, endpoint.catalog) == (52184, "Model")
        assert dotenv_values(env_file)["PBI_DB_ID"] == "Model"

    def test_user_picks_catalog(self, tmp_path):
        make_workspace(tmp_path, "AnalysisServicesWorkspace_1", 52184)
        env_file = tmp_path / ".env"

        with patch("pbi_local_mcp.discovery.questionary.select") as select:
            select.return_value.ask.return_value = "B"
            endpoint = discovery.run_interactive(
                str(env_file), [tmp_path], session_factory_for({52184: ["A", "B"]}), self.console()
            )

        assert endpoint.catalog == "B"

    def test_cancel_writes_nothing(self, tmp_path):
        make_workspace(tmp_path, "AnalysisServicesWorkspace_1", 52184)
        make_workspace(tmp_path, "AnalysisServicesWorkspace_2", 52190)
        env_file = tmp_path / ".env"

        with patch("pbi_local_mcp.discovery.questionary.select") as select:
            select.return_value.ask.return_value = None
            endpoint = discovery.run_interactive(
                str(env_file), [tmp_path], session_factory_for({52184: ["A"], 52190: ["B"]}), self.console()
            )

        assert endpoint is None
        assert not env_file.exists()

    def test_nothing_found(self, tmp_path):
        console = self.console()

        assert discovery.run_interactive(str(tmp_path / ".env"), [tmp_path], console=console) is None
        assert "No running Power BI Desktop instances" in console.file.getvalue()
