import asyncio
import os
import shutil
import tempfile

import pytest

# Settings are read at import time, so defaults go in before any app module loads
_STORAGE_DIR = tempfile.mkdtemp(prefix='bliss-storage-')
os.environ.setdefault('STORAGE_BACKEND', 'local')
os.environ.setdefault('LOCAL_STORAGE_PATH', _STORAGE_DIR)
os.environ.setdefault('METADATA_BACKEND', 'db')
os.environ.setdefault('DATABASE_URL', 'sqlite://:memory:')
os.environ.setdefault('NOTIFICATION_BACKEND', 'log')
os.environ.setdefault('BLISS_TRANSMUX_ENABLED', 'true')
os.environ.setdefault('BLISS_RESPONSE_CDN_URL', '')
os.environ.setdefault('TRANSCODER_URL', '')

from tortoise import Tortoise  # noqa: E402

from apps.bliss.identifiers import BlissClock  # noqa: E402
from apps.bliss.metadata import MetadataStore, TortoiseItemBackend  # noqa: E402
from apps.bliss.notifications import NotificationPublisher, LogTransport  # noqa: E402
from apps.bliss.services import BlissCoordinator, BlissTopics  # noqa: E402
from apps.bliss.storage import LocalStorage  # noqa: E402
from apps.bliss.transcoder import PassthroughTranscoder  # noqa: E402

NOW = 1_700_000_000


class FakeTime:
    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now


class RecordingTransport:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.messages = []

    async def publish(self, topic: str, message: str) -> str:
        from apps.bliss.errors import NotificationFailure
        if self.fail:
            raise NotificationFailure('topic unavailable')
        self.messages.append((topic, message))
        return f'msg-{len(self.messages)}'


def run_with_db(scenario):
    """Run ``scenario()`` against a fresh in-memory Tortoise database."""
    async def _run():
        await Tortoise.init(db_url='sqlite://:memory:', modules={'models': ['apps.bliss.models']})
        await Tortoise.generate_schemas()
        try:
            return await scenario()
        finally:
            await Tortoise.close_connections()

    return asyncio.run(_run())


@pytest.fixture
def fake_time():
    return FakeTime()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def make_coordinator(tmp_path, fake_time, transport):
    """Build a coordinator on local storage, sqlite tables and a recording topic."""

    def _make(**overrides):
        backend = TortoiseItemBackend(now=fake_time)
        output = LocalStorage(str(tmp_path), 'response-output', secret='test-secret')
        kwargs = dict(
            clock=BlissClock(now=fake_time),
            request_videos=LocalStorage(str(tmp_path), 'request', secret='test-secret'),
            response_videos=LocalStorage(str(tmp_path), 'response', secret='test-secret'),
            response_output=output,
            response_urls=output,
            requests=MetadataStore(backend, 'bliss_requests'),
            responses=MetadataStore(backend, 'bliss_responses'),
            publisher=NotificationPublisher(transport),
            topics=BlissTopics('topic-request', 'topic-response', 'topic-cancel'),
            transcoder=PassthroughTranscoder(),
        )
        kwargs.update(overrides)
        return BlissCoordinator(**kwargs)

    return _make


@pytest.fixture(autouse=True, scope='session')
def cleanup_storage():
    yield
    shutil.rmtree(_STORAGE_DIR, ignore_errors=True)
