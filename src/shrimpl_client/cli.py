from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from pathlib import Path
import shlex
from typing import Optional

import typer

from shrimpl_client.command import server_command
from shrimpl_client.config import TomlConfigurationStore, config_file
from shrimpl_client.extension import ShrimplExtension, activate, deactivate
from shrimpl_client.file_events import WorkspaceFileWatcher
from shrimpl_client.host import ExtensionContext, Host, StaticWorkspace, WorkspaceFolder
from shrimpl_client.lifecycle import ClientState
from shrimpl_client.lsp_client import TRACE_LOGGER_NAME, server_options

app = typer.Typer(add_completion=False)

_DEFAULT_EXTENSION_PATH = Path(__file__).resolve().parent
_DEFAULT_POLL_INTERVAL_SECONDS = 1.0
_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class EchoNotifications:
    def info(self, message: str) -> None:
        typer.echo(message)

    def error(self, message: str) -> None:
        typer.echo(message, err=True)


def _configure_logging(verbose: bool, trace: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format=_LOG_FORMAT,
    )
    logging.getLogger(TRACE_LOGGER_NAME).setLevel(
        logging.DEBUG if trace else logging.WARNING
    )


def _build_host(
    workspace: Path | None,
    config: Path | None,
) -> tuple[Host, TomlConfigurationStore]:
    store = TomlConfigurationStore(config_file(root=workspace, config_path=config))
    folders = (WorkspaceFolder.from_path(workspace),) if workspace is not None else ()
    host = Host(
        configuration=store,
        workspace=StaticWorkspace(folders),
        notifications=EchoNotifications(),
    )
    return host, store


async def _check(context: ExtensionContext, host: Host) -> ClientState:
    extension = await activate(context, host)
    reached = extension.state
    await deactivate(context)
    return reached


async def _poll_once(
    extension: ShrimplExtension,
    store: TomlConfigurationStore,
    files: WorkspaceFileWatcher,
) -> None:
    store.reload()
    await extension.lifecycle.forward_file_events(files.poll())


async def _run(
    context: ExtensionContext,
    host: Host,
    store: TomlConfigurationStore,
    poll_interval: float,
) -> ClientState:
    extension = await activate(context, host)
    reached = extension.state
    files = WorkspaceFileWatcher(
        host.workspace.workspace_folders(),
        extension.lifecycle.client_options,
    )
    try:
        while extension.lifecycle.client_running:
            await asyncio.sleep(poll_interval)
            await _poll_once(extension, store, files)
    finally:
        await deactivate(context)
    return reached


@app.command()
def resolve(
    workspace: Optional[Path] = typer.Option(None, "--workspace"),
    config: Optional[Path] = typer.Option(None, "--config"),
    extension_path: Path = typer.Option(_DEFAULT_EXTENSION_PATH, "--extension-path"),
    show_args: bool = typer.Option(False, "--args"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Print the command that would launch the language server."""
    _configure_logging(verbose, trace=False)
    host, _ = _build_host(workspace, config)
    context = ExtensionContext(extension_path=extension_path)
    command = server_command(host.configuration, host.workspace, context.as_absolute_path)
    typer.echo(command)
    if show_args:
        options = server_options(command)
        typer.echo(f"run: {shlex.join(options.run.argv())}")
        typer.echo(f"debug: {shlex.join(options.debug.argv())}")


@app.command()
def check(
    workspace: Optional[Path] = typer.Option(None, "--workspace"),
    config: Optional[Path] = typer.Option(None, "--config"),
    extension_path: Path = typer.Option(_DEFAULT_EXTENSION_PATH, "--extension-path"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    trace: bool = typer.Option(False, "--trace"),
) -> None:
    """Start the language server, report the outcome and shut it down."""
    _configure_logging(verbose, trace)
    host, _ = _build_host(workspace, config)
    context = ExtensionContext(extension_path=extension_path)
    reached = asyncio.run(_check(context, host))
    typer.echo(f"Language server state: {reached.value}")
    raise typer.Exit(code=0 if reached is ClientState.RUNNING else 1)


@app.command()
def run(
    workspace: Optional[Path] = typer.Option(None, "--workspace"),
    config: Optional[Path] = typer.Option(None, "--config"),
    extension_path: Path = typer.Option(_DEFAULT_EXTENSION_PATH, "--extension-path"),
    poll_interval: float = typer.Option(_DEFAULT_POLL_INTERVAL_SECONDS, "--poll-interval", min=0.05),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    trace: bool = typer.Option(False, "--trace"),
) -> None:
    """Keep the language server running and watch settings and source files."""
    _configure_logging(verbose, trace)
    host, store = _build_host(workspace, config)
    context = ExtensionContext(extension_path=extension_path)
    try:
        reached = asyncio.run(_run(context, host, store, poll_interval))
    except KeyboardInterrupt:
        typer.echo("Interrupted.", err=True)
        raise typer.Exit(code=130)
    raise typer.Exit(code=0 if reached is ClientState.RUNNING else 1)


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
