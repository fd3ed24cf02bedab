from __future__ import annotations

import logging

from shrimpl_client.config import SERVER_PATH_KEY
from shrimpl_client.host import (
    ConfigurationChangeEvent,
    ConfigurationStore,
    Disposable,
    NotificationSink,
)
from shrimpl_client.lifecycle import NOTIFICATION_PREFIX

logger = logging.getLogger(__name__)


class ConfigWatcher:
    """Advises a reload when the server path setting changes.

    The running client is left alone; picking up the new command needs a
    fresh activation.
    """

    def __init__(
        self,
        configuration: ConfigurationStore,
        notifications: NotificationSink,
        *,
        key: str = SERVER_PATH_KEY,
    ) -> None:
        self.configuration = configuration
        self.notifications = notifications
        self.key = key

    def register(self) -> Disposable:
        return self.configuration.on_did_change(self.on_change)

    def on_change(self, event: ConfigurationChangeEvent) -> bool:
        if not event.affects(self.key):
            return False
        logger.info(
            "Configuration '%s' changed. Please reload to restart the language server with the new path.",
            self.key,
        )
        self.notifications.info(
            f"{NOTIFICATION_PREFIX} '{self.key}' changed. "
            "Reload the window to apply the new language server path."
        )
        return True
