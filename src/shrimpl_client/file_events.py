"""Polling watcher that turns workspace file edits into LSP file events."""

from __future__ import annotations

import logging
import os
from typing import Sequence, TypeAlias

from shrimpl_client.host import WorkspaceFolder
from shrimpl_client.lsp_client import ClientOptions, FileChangeType, FileEvent

logger = logging.getLogger(__name__)

_SKIPPED_DIRECTORIES = frozenset({".git", ".hg", ".svn", "node_modules"})

FileStamp: TypeAlias = tuple[int, int]


class WorkspaceFileWatcher:
    """Tracks files matching the client's watch pattern under each folder.

    The first scan happens on construction and only sets the baseline;
    ``poll()`` reports what was created, changed or deleted since the
    previous scan, ordered by path.
    """

    def __init__(
        self,
        folders: Sequence[WorkspaceFolder],
        options: ClientOptions,
    ) -> None:
        self.folders = tuple(folders)
        self.options = options
        self._stamps = self.scan()

    def scan(self) -> dict[str, FileStamp]:
        stamps: dict[str, FileStamp] = {}
        for folder in self.folders:
            for root, dirs, files in os.walk(folder.root_path):
                dirs[:] = sorted(name for name in dirs if name not in _SKIPPED_DIRECTORIES)
                for name in files:
                    path = os.path.join(root, name)
                    if not self.options.watches(path):
                        continue
                    try:
                        info = os.stat(path)
                    except OSError:
                        # removed between listing and stat
                        continue
                    stamps[path] = (info.st_mtime_ns, info.st_size)
        return stamps

    def poll(self) -> list[FileEvent]:
        current = self.scan()
        previous, self._stamps = self._stamps, current
        events: list[FileEvent] = []
        for path in sorted(previous.keys() | current.keys()):
            if path not in previous:
                events.append(FileEvent(path, FileChangeType.CREATED))
            elif path not in current:
                events.append(FileEvent(path, FileChangeType.DELETED))
            elif previous[path] != current[path]:
                events.append(FileEvent(path, FileChangeType.CHANGED))
        if events:
            logger.debug("Detected %d watched file change(s)", len(events))
        return events
