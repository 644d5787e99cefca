"""
Pytest configuration and fixtures for socialmod tests.
"""

import asyncio
import sys
from io import BytesIO
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
import yaml
from PIL import Image

# Add src directory to path so imports work
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from socialmod.configuration.app_configuration import AppConfig  # noqa: E402
from socialmod.database.db_cache import DatabaseQueryCache  # noqa: E402
from socialmod.database.db_connection import ConnectionManager  # noqa: E402
from socialmod.database.db_schema import SchemaManager  # noqa: E402
from socialmod.datatypes.moderation_datatypes import SubmissionReceipt  # noqa: E402
from socialmod.datatypes.push_datatypes import PushHubConfig  # noqa: E402
from socialmod.pipeline import Pipeline  # noqa: E402

APP = "APP1"
USER = "USER1"
CALLBACK_BASE = "https://api.example.com/v1/moderation/callbacks"
CDN_BASE = "https://cdn.example.com/images"


def make_image_bytes(width: int = 1200, height: int = 800, fmt: str = "PNG", color=(200, 40, 40)) -> bytes:
    """Encode a solid-color image of the given size."""
    image = Image.new("RGB", (width, height), color)
    buffer = BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


class FakeReviewProvider:
    """Review provider double that records every submission."""

    def __init__(self) -> None:
        self.calls: List[Tuple[str, object, str]] = []
        self.error: Optional[Exception] = None
        self.already_submitted = False
        self.delay_seconds = 0.0

    async def submit(self, moderation_handle, content, callback_uri) -> SubmissionReceipt:
        self.calls.append((moderation_handle, content, callback_uri))
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.error is not None:
            raise self.error
        return SubmissionReceipt(job_id=f"job-{moderation_handle}", already_submitted=self.already_submitted)

    def handles(self) -> List[str]:
        return [call[0] for call in self.calls]


class RecordingPushHub:
    """Push hub double; every instance appends to the shared ``events`` list."""

    def __init__(self, config: PushHubConfig, events: List[tuple], fail_sends: bool = False) -> None:
        self.config = config
        self.events = events
        self.fail_sends = fail_sends
        self._next_id = 0

    async def create(self) -> None:
        self.events.append(("create", self.config.platform_type, self.config.app_handle))

    async def delete(self) -> None:
        self.events.append(("delete", self.config.platform_type, self.config.app_handle))

    async def create_registration(self, registration_id, tags) -> str:
        self._next_id += 1
        hub_id = f"{self.config.platform_type}-{registration_id}-{self._next_id}"
        self.events.append(("register", registration_id, tuple(tags), hub_id))
        return hub_id

    async def delete_registration(self, hub_registration_id) -> None:
        self.events.append(("unregister", hub_registration_id))

    async def send_notification(self, tags, message, activity_handle) -> None:
        if self.fail_sends:
            raise RuntimeError("hub unreachable")
        self.events.append(("send", self.config.platform_type, tuple(tags), message, activity_handle))


class PushHubRecorder:
    """Factory for ``RecordingPushHub`` instances sharing one event log."""

    def __init__(self) -> None:
        self.events: List[tuple] = []
        self.fail_sends = False
        self.hubs: Dict[tuple, RecordingPushHub] = {}

    def __call__(self, config: PushHubConfig) -> RecordingPushHub:
        hub = RecordingPushHub(config, self.events, self.fail_sends)
        self.hubs[(config.platform_type, config.app_handle)] = hub
        return hub

    def of_kind(self, kind: str) -> List[tuple]:
        return [event for event in self.events if event[0] == kind]


def write_config(tmp_path: Path, **overrides) -> Path:
    data = {
        "database": {"path": str(tmp_path / "socialmod.db"), "cache_ttl_seconds": 0},
        "blob_storage": {"root": str(tmp_path / "blobs")},
        "cdn": {"base_url": CDN_BASE},
        "moderation": {
            "callback_base_url": CALLBACK_BASE,
            "provider_url": "https://review.example.com/v1",
            "provider_timeout_seconds": 2,
        },
        "images": {"jpeg_quality": 80, "max_review_image_bytes": 4194304, "min_review_image_pixels": 50},
        "queues": {"max_dequeue_count": 3, "retry_delay_seconds": 0, "worker_count": 1},
    }
    for section, values in overrides.items():
        data.setdefault(section, {}).update(values)
    path = tmp_path / "app_config.yml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


@pytest.fixture
def app_config(tmp_path) -> AppConfig:
    return AppConfig(write_config(tmp_path))


@pytest.fixture
def review_provider() -> FakeReviewProvider:
    return FakeReviewProvider()


@pytest.fixture
def push_hubs() -> PushHubRecorder:
    return PushHubRecorder()


@pytest.fixture
def image_bytes() -> bytes:
    return make_image_bytes()


@pytest_asyncio.fixture
async def connection(tmp_path):
    """Open connection to a fresh database with the schema applied."""
    manager = ConnectionManager()
    await manager.open(tmp_path / "test.db")
    await SchemaManager.initialize_schema(manager.connection)
    yield manager
    await manager.close()


@pytest.fixture
def cache() -> DatabaseQueryCache:
    return DatabaseQueryCache(ttl_seconds=60)


@pytest_asyncio.fixture
async def pipeline(app_config, review_provider, push_hubs):
    """Fully wired pipeline over a temporary database and blob root."""
    opened = await Pipeline.open(app_config, review_provider=review_provider, push_hub_factory=push_hubs)
    yield opened
    await opened.close()
