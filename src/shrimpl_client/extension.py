"""Activation entry points wiring the resolver, client lifecycle and watcher."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Mapping, Sequence

from shrimpl_client.command import resolve_server_command
from shrimpl_client.config import SERVER_PATH_KEY, debug_enabled, handshake_timeout_seconds
from shrimpl_client.host import ConfigurationStore, ExtensionContext, Host, WorkspaceFolder
from shrimpl_client.invariants import never
from shrimpl_client.lifecycle import ClientFactory, ClientLifecycle, ClientState
from shrimpl_client.lsp_client import ClientOptions, LanguageClient, server_options
from shrimpl_client.platform_binary import PlatformId
from shrimpl_client.watcher import ConfigWatcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShrimplExtension:
    command: str
    lifecycle: ClientLifecycle
    watcher: ConfigWatcher

    @property
    def state(self) -> ClientState:
        return self.lifecycle.state


def client_options_for(
    configuration: ConfigurationStore,
    folders: Sequence[WorkspaceFolder],
) -> ClientOptions:
    return ClientOptions(
        workspace_folders=tuple(folders),
        debug=debug_enabled(configuration),
        handshake_timeout=handshake_timeout_seconds(configuration),
    )


async def activate(
    context: ExtensionContext,
    host: Host,
    *,
    client_factory: ClientFactory = LanguageClient,
    platform: PlatformId | None = None,
    environ: Mapping[str, str] | None = None,
) -> ShrimplExtension:
    """Resolve the server command, start the client and watch the settings.

    A failed start leaves the extension in ``ClientState.FAILED``; it does
    not raise.
    """
    if context.extension is not None:
        never("extension already active", extension_path=str(context.extension_path))
    folders = tuple(host.workspace.workspace_folders())
    command = resolve_server_command(
        host.configuration.get_string(SERVER_PATH_KEY),
        folders,
        context.as_absolute_path,
        platform=platform,
    )
    lifecycle = ClientLifecycle(
        server_options(command, environ=environ),
        client_options_for(host.configuration, folders),
        host.notifications,
        client_factory=client_factory,
    )
    watcher = ConfigWatcher(host.configuration, host.notifications)
    extension = ShrimplExtension(command=command, lifecycle=lifecycle, watcher=watcher)
    context.extension = extension
    context.subscriptions.append(watcher.register())
    await lifecycle.start()
    return extension


async def deactivate(context: ExtensionContext) -> ClientState | None:
    extension, context.extension = context.extension, None
    context.dispose_subscriptions()
    if extension is None:
        return None
    state = await extension.lifecycle.stop()
    logger.info("Shrimpl extension deactivated (%s)", state.value)
    return state
