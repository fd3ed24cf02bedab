"""Interfaces the host application provides to the Shrimpl client layer."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Protocol, Sequence, runtime_checkable

if TYPE_CHECKING:
    from shrimpl_client.extension import ShrimplExtension

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkspaceFolder:
    root_path: str
    name: str

    @classmethod
    def from_path(cls, path: Path) -> WorkspaceFolder:
        resolved = path.resolve()
        return cls(root_path=str(resolved), name=resolved.name)


class Disposable:
    """Handle returned by subscriptions; ``dispose()`` runs its callback once."""

    def __init__(self, callback: Callable[[], None]) -> None:
        self._callback: Callable[[], None] | None = callback

    @property
    def disposed(self) -> bool:
        return self._callback is None

    def dispose(self) -> None:
        callback, self._callback = self._callback, None
        if callback is not None:
            callback()


@runtime_checkable
class ConfigurationChangeEvent(Protocol):
    def affects(self, key: str) -> bool:
        """Return True when the change touches ``key``."""


ConfigurationListener = Callable[[ConfigurationChangeEvent], None]


@runtime_checkable
class ConfigurationStore(Protocol):
    def get_string(self, key: str) -> str | None:
        """Return the string setting for ``key`` or None when unset."""

    def on_did_change(self, listener: ConfigurationListener) -> Disposable:
        """Register ``listener`` for change events."""


@runtime_checkable
class WorkspaceProvider(Protocol):
    def workspace_folders(self) -> Sequence[WorkspaceFolder]:
        """Return the open workspace folders, first one first."""


@runtime_checkable
class NotificationSink(Protocol):
    def info(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...


@dataclass(frozen=True)
class StaticWorkspace:
    folders: tuple[WorkspaceFolder, ...] = ()

    def workspace_folders(self) -> Sequence[WorkspaceFolder]:
        return self.folders


@dataclass(frozen=True)
class LoggingNotifications:
    """Notification sink that only writes to a logger."""

    log: logging.Logger = logger

    def info(self, message: str) -> None:
        self.log.info(message)

    def error(self, message: str) -> None:
        self.log.error(message)


@dataclass(frozen=True)
class Host:
    configuration: ConfigurationStore
    workspace: WorkspaceProvider
    notifications: NotificationSink


@dataclass
class ExtensionContext:
    """Per-activation state owned by the host.

    ``extension`` holds the single active extension handle; it is set by
    ``activate`` and cleared by ``deactivate``.
    """

    extension_path: Path
    subscriptions: list[Disposable] = field(default_factory=list)
    extension: ShrimplExtension | None = None

    def as_absolute_path(self, *segments: str) -> str:
        return os.path.abspath(os.path.join(str(self.extension_path), *segments))

    def dispose_subscriptions(self) -> None:
        while self.subscriptions:
            self.subscriptions.pop().dispose()
