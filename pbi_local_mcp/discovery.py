"""Discovery of running Power BI Desktop engine instances.

Power BI Desktop starts a local Analysis Services engine per open report
and writes its port to ``msmdsrv.port.txt`` inside a workspace directory.
This module finds those ports, lists the catalogs each engine hosts, and
persists the chosen one to the settings file read at startup.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Mapping, Optional

import questionary
from dotenv import set_key
from rich.console import Console
from rich.table import Table

from . import queries
from .adomd import AdomdSession, build_server_connection_string
from .constants import (
    DISCOVERY_TIMEOUT,
    ENV_CATALOG,
    ENV_PORT,
    LOCALAPPDATA_WORKSPACE_ROOTS,
    PORT_FILE_NAME,
    USERPROFILE_WORKSPACE_ROOTS,
    WORKSPACE_DIR_PREFIX,
)
from .exceptions import ConfigurationError, GatewayError
from .models import EngineEndpoint

logger = logging.getLogger(__name__)

SessionFactory = Callable[[str], object]


@dataclass
class EngineInstance:
    """A running engine found in a workspace directory."""
    port: int
    workspace: Path
    catalogs: List[str] = field(default_factory=list)


def default_workspace_roots(environ: Optional[Mapping[str, str]] = None) -> List[Path]:
    """Directories under which Power BI Desktop keeps its engine workspaces."""
    environ = os.environ if environ is None else environ
    roots = []
    local_app_data = environ.get("LOCALAPPDATA")
    if local_app_data:
        roots.extend(Path(local_app_data).joinpath(*parts) for parts in LOCALAPPDATA_WORKSPACE_ROOTS)
    user_profile = environ.get("USERPROFILE")
    if user_profile:
        roots.extend(Path(user_profile).joinpath(*parts) for parts in USERPROFILE_WORKSPACE_ROOTS)
    return roots


def read_port_file(path: Path) -> Optional[int]:
    """Parse a port file. The engine writes it as UTF-16; UTF-8 is accepted too."""
    data = path.read_bytes()
    if data.startswith((b"\xff\xfe", b"\xfe\xff")) or b"\x00" in data:
        text = data.decode("utf-16")
    else:
        text = data.decode("utf-8-sig")
    text = text.strip().strip("\x00")
    try:
        port = int(text)
    except ValueError:
        logger.warning(f"Ignoring unreadable port file {path}: {text[:20]!r}")
        return None
    try:
        EngineEndpoint(port, "pending")
    except ConfigurationError as e:
        logger.warning(f"Ignoring port file {path}: {e}")
        return None
    return port


def find_workspace_ports(roots: Optional[List[Path]] = None) -> List[EngineInstance]:
    """Scan workspace roots for engine port files, one entry per distinct port."""
    roots = default_workspace_roots() if roots is None else roots
    found = {}
    for root in roots:
        root = Path(root)
        if not root.is_dir():
            logger.debug(f"Workspace root not found: {root}")
            continue
        for workspace in sorted(root.iterdir()):
            if not workspace.is_dir() or not workspace.name.startswith(WORKSPACE_DIR_PREFIX):
                continue
            for candidate in (workspace / PORT_FILE_NAME, workspace / "Data" / PORT_FILE_NAME):
                if not candidate.is_file():
                    continue
                port = read_port_file(candidate)
                if port is not None and port not in found:
                    found[port] = EngineInstance(port=port, workspace=workspace)
                    logger.info(f"Found engine on port {port} in {workspace.name}")
                break
    return list(found.values())


def list_catalogs(port: int, session_factory: Optional[SessionFactory] = None) -> List[str]:
    """Catalog names hosted by the engine on ``port``."""
    session_factory = session_factory or AdomdSession
    session = session_factory(build_server_connection_string(port))
    try:
        session.open()
        result = session.execute_dmv(queries.list_catalogs().text, DISCOVERY_TIMEOUT)
    finally:
        session.close()
    return [str(row["CATALOG_NAME"]) for row in result.rows if row.get("CATALOG_NAME")]


def discover_instances(
    roots: Optional[List[Path]] = None,
    session_factory: Optional[SessionFactory] = None,
) -> List[EngineInstance]:
    """Running engines with at least one catalog. Unreachable ports are skipped."""
    instances = []
    for instance in find_workspace_ports(roots):
        try:
            instance.catalogs = list_catalogs(instance.port, session_factory)
        except GatewayError as e:
            logger.warning(f"Could not list catalogs on port {instance.port}: {e}")
            continue
        if not instance.catalogs:
            logger.info(f"No catalogs on port {instance.port}; skipping")
            continue
        instances.append(instance)
    return instances


def first_catalog(port: int, session_factory: Optional[SessionFactory] = None) -> str:
    """Catalog to bind to when only a port is configured."""
    try:
        catalogs = list_catalogs(port, session_factory)
    except GatewayError as e:
        raise ConfigurationError(f"Could not list catalogs on port {port}: {e}") from e
    if not catalogs:
        raise ConfigurationError(f"No catalogs found on port {port}")
    logger.info(f"Using first catalog on port {port}: {catalogs[0]}")
    return catalogs[0]


def write_settings(port: int, catalog: str, env_file: str) -> EngineEndpoint:
    """Persist the endpoint to the settings file."""
    endpoint = EngineEndpoint(port, catalog)
    path = Path(env_file)
    if not path.exists():
        path.write_text("# Power BI local MCP connection settings\n", encoding="utf-8")
    set_key(str(path), ENV_PORT, str(endpoint.port))
    set_key(str(path), ENV_CATALOG, endpoint.catalog)
    logger.info(f"Wrote {ENV_PORT}={endpoint.port} and {ENV_CATALOG} to {path}")
    return endpoint


def show_instances(instances: List[EngineInstance], console: Console) -> None:
    table = Table(title="Power BI Desktop instances")
    table.add_column("#", style="bold", width=3)
    table.add_column("Port", style="cyan")
    table.add_column("Workspace")
    table.add_column("Catalogs")
    for index, instance in enumerate(instances, start=1):
        table.add_row(str(index), str(instance.port), instance.workspace.name, "\n".join(instance.catalogs))
    console.print(table)


def run_interactive(
    env_file: str,
    roots: Optional[List[Path]] = None,
    session_factory: Optional[SessionFactory] = None,
    console: Optional[Console] = None,
) -> Optional[EngineEndpoint]:
    """Find instances, let the user pick one, and write the settings file.

    Returns the chosen endpoint, or None if nothing was found or the user cancelled.
    """
    console = console or Console()
    console.print("[bold cyan]Searching for running Power BI Desktop instances...[/bold cyan]")

    instances = discover_instances(roots, session_factory)
    if not instances:
        console.print("[bold red]No running Power BI Desktop instances found.[/bold red]")
        console.print("Open a report in Power BI Desktop and try again.")
        return None

    show_instances(instances, console)

    if len(instances) == 1:
        instance = instances[0]
    else:
        instance = questionary.select(
            "Select an instance:",
            choices=[
                questionary.Choice(f"Port {item.port} ({', '.join(item.catalogs)})", value=item)
                for item in instances
            ],
        ).ask()
        if instance is None:  # User cancelled
            return None

    if len(instance.catalogs) == 1:
        catalog = instance.catalogs[0]
    else:
        catalog = questionary.select(
            "Select a catalog:",
            choices=[questionary.Choice(name, value=name) for name in instance.catalogs],
        ).ask()
        if catalog is None:
            return None

    endpoint = write_settings(instance.port, catalog, env_file)
    console.print(f"[bold green]✓[/bold green] Saved port {endpoint.port} and catalog {endpoint.catalog} to {env_file}")
    return endpoint
