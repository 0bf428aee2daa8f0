import os
from unittest.mock import MagicMock

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlmodel import create_engine
from sqlmodel.pool import StaticPool

from uniconvert.core.db import init_db
from uniconvert.core.media import MediaType
from uniconvert.main import create_app
from uniconvert.services.job_tracker import JobTracker
from uniconvert.services.notifier import WebhookNotifier
from uniconvert.services.orchestrator import Orchestrator
from uniconvert.services.queue import ConversionQueue
from uniconvert.services.storage_manager import CleanupSweeper
from uniconvert.worker import bind_pipeline


# create in-memory test database
@pytest.fixture(name="engine")
def engine_fixture():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture(name="redis_conn")
def redis_fixture():
    # a private server per test so queues never leak between tests
    return fakeredis.FakeStrictRedis(server=fakeredis.FakeServer())


@pytest.fixture(name="dirs")
def dirs_fixture(tmp_path):
    uploads = tmp_path / "uploads"
    outputs = tmp_path / "outputs"
    uploads.mkdir()
    outputs.mkdir()
    return {"uploads": str(uploads), "outputs": str(outputs)}


@pytest.fixture(name="tracker")
def tracker_fixture(engine):
    return JobTracker(engine)


@pytest.fixture(name="queues")
def queues_fixture(redis_conn):
    # three attempts, retried immediately
    return {
        media_type: ConversionQueue(media_type, redis_conn, attempts=3, retry_intervals=[0, 0])
        for media_type in MediaType
    }


@pytest.fixture(name="notifier")
def notifier_fixture():
    return MagicMock(spec=WebhookNotifier)


@pytest.fixture(name="orchestrator")
def orchestrator_fixture(tracker, queues, notifier, dirs, redis_conn):
    return Orchestrator(
        tracker=tracker,
        queues=queues,
        notifier=notifier,
        uploads_dir=dirs["uploads"],
        outputs_dir=dirs["outputs"],
        sweeper=CleanupSweeper([dirs["uploads"], dirs["outputs"]], retention_hours=1),
        connection=redis_conn,
    )


@pytest.fixture(name="client")
def client_fixture(orchestrator):
    app = create_app(orchestrator=orchestrator, start_sweeper=False, start_reconciler=False)
    client = TestClient(app)
    yield client


@pytest.fixture(autouse=True)
def reset_worker_pipeline():
    yield
    bind_pipeline(None)


@pytest.fixture(name="make_input")
def make_input_fixture(dirs):
    """write a small upload into the uploads directory and return its path"""
    def _make(name="clip.mp4", content=b"fake media content"):
        path = os.path.join(dirs["uploads"], name)
        with open(path, "wb") as f:
            f.write(content)
        return path
    return _make
