"""Resolution of the command used to launch the Shrimpl language server."""

from __future__ import annotations

import logging
import os
from typing import Callable, Sequence

from shrimpl_client.config import SERVER_PATH_KEY
from shrimpl_client.host import ConfigurationStore, WorkspaceFolder, WorkspaceProvider
from shrimpl_client.platform_binary import PlatformId, current_platform, platform_binary_name

logger = logging.getLogger(__name__)

WORKSPACE_FOLDER_TOKEN = "${workspaceFolder}"
WORKSPACE_FOLDER_BASENAME_TOKEN = "${workspaceFolderBasename}"
_PLACEHOLDER_PREFIX = "${workspaceFolder"

SERVER_DIRECTORY = "server"

InstallPathFn = Callable[..., str]


def _has_separator(text: str) -> bool:
    return "/" in text or "\\" in text


def substitute_and_locate(text: str, folders: Sequence[WorkspaceFolder]) -> str:
    """Expand workspace placeholders in ``text`` and anchor relative paths.

    Text without a path separator is a command looked up on ``PATH`` and is
    returned as is. Relative paths are joined onto the first workspace
    folder. Without a workspace, placeholders and relative paths pass
    through untouched.
    """
    workspace = folders[0] if folders else None
    resolved = text
    if workspace is not None:
        resolved = resolved.replace(WORKSPACE_FOLDER_TOKEN, workspace.root_path)
        resolved = resolved.replace(WORKSPACE_FOLDER_BASENAME_TOKEN, workspace.name)
    if _PLACEHOLDER_PREFIX in resolved:
        if workspace is None:
            logger.warning(
                "Unresolved workspace placeholder in LSP command %r; no workspace folder is open.",
                resolved,
            )
        else:
            logger.warning("Unknown workspace placeholder left in LSP command %r.", resolved)
    if not _has_separator(resolved):
        return resolved
    if os.path.isabs(resolved):
        return resolved
    if workspace is None:
        return resolved
    return os.path.normpath(os.path.join(workspace.root_path, resolved))


def bundled_server_path(
    install_path: InstallPathFn,
    platform: PlatformId | None = None,
) -> str:
    target = platform or current_platform()
    binary = platform_binary_name(target.os_family, target.arch)
    return install_path(SERVER_DIRECTORY, binary)


def resolve_server_command(
    raw_setting: str | None,
    folders: Sequence[WorkspaceFolder],
    install_path: InstallPathFn,
    *,
    platform: PlatformId | None = None,
) -> str:
    trimmed = (raw_setting or "").strip()
    if not trimmed:
        bundled = bundled_server_path(install_path, platform)
        logger.info(
            "No custom '%s' configured. Using bundled language server binary: %s",
            SERVER_PATH_KEY,
            bundled,
        )
        return bundled
    logger.info("Using custom LSP command from setting '%s'.", SERVER_PATH_KEY)
    resolved = substitute_and_locate(trimmed, folders)
    logger.info("Raw LSP command from settings: %s", raw_setting)
    logger.info("Resolved LSP command to: %s", resolved)
    return resolved


def server_command(
    configuration: ConfigurationStore,
    workspace: WorkspaceProvider,
    install_path: InstallPathFn,
    *,
    platform: PlatformId | None = None,
) -> str:
    return resolve_server_command(
        configuration.get_string(SERVER_PATH_KEY),
        list(workspace.workspace_folders()),
        install_path,
        platform=platform,
    )
