from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
for entry in (ROOT / "src", ROOT):
    if str(entry) not in sys.path:
        sys.path.insert(0, str(entry))


import pytest

from shrimpl_client.config import DEBUG_ENV, HANDSHAKE_TIMEOUT_ENV
from shrimpl_client.host import WorkspaceFolder
from tests.env_helpers import env_scope
from tests.harness.client_harness import RecordingNotifications


@pytest.fixture(autouse=True)
def _isolated_lsp_env():
    with env_scope({DEBUG_ENV: None, HANDSHAKE_TIMEOUT_ENV: None}):
        yield


@pytest.fixture
def notifications() -> RecordingNotifications:
    return RecordingNotifications()


@pytest.fixture
def workspace_folder(tmp_path: Path) -> WorkspaceFolder:
    root = tmp_path / "proj"
    root.mkdir()
    return WorkspaceFolder.from_path(root)
