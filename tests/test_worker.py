import os
from unittest.mock import MagicMock, patch

from rq import SimpleWorker
from rq.registry import ScheduledJobRegistry

from uniconvert import worker
from uniconvert.core.config import settings
from uniconvert.core.media import MediaType
from uniconvert.models import JobStatus
from uniconvert.services.notifier import WebhookNotifier
from uniconvert.services.pipeline import ConversionPipeline
from uniconvert.services.queue import ConversionQueue

from tests.fakes import FailingConverter, FakeConverter


def _bind(tracker, dirs, converter, notifier):
    pipeline = ConversionPipeline(
        tracker,
        {media_type: converter for media_type in MediaType},
        notifier,
        dirs["outputs"],
    )
    worker.bind_pipeline(pipeline)
    return pipeline


def _drain(queue, redis_conn):
    SimpleWorker([queue.rq_queue], connection=redis_conn).work(burst=True)


def test_job_runs_to_completion(orchestrator, tracker, queues, redis_conn, dirs, make_input):
    notifier = MagicMock(spec=WebhookNotifier)
    converter = FakeConverter()
    _bind(tracker, dirs, converter, notifier)
    input_path = make_input("song.wav")
    job = orchestrator.submit(input_path, "song.wav", "mp3", webhook_url="http://hooks.example/cb")

    _drain(queues[MediaType.AUDIO], redis_conn)

    stored = tracker.get(job.id)
    assert stored.status == JobStatus.COMPLETED
    assert stored.attempts == 1
    assert converter.calls == 1
    assert not os.path.exists(input_path)
    assert queues[MediaType.AUDIO].state_of(job.id) == "completed"
    notifier.notify_job.assert_called_once()


def test_failing_job_is_retried_then_failed(orchestrator, tracker, queues, redis_conn, dirs, make_input):
    """test three attempts, one failure record and one webhook"""
    notifier = MagicMock(spec=WebhookNotifier)
    converter = FailingConverter("encoder exploded")
    _bind(tracker, dirs, converter, notifier)
    input_path = make_input("clip.mp4")
    job = orchestrator.submit(input_path, "clip.mp4", "webm", webhook_url="http://hooks.example/cb")

    _drain(queues[MediaType.VIDEO], redis_conn)

    stored = tracker.get(job.id)
    assert converter.calls == 3
    assert stored.attempts == 3
    assert stored.status == JobStatus.FAILED
    assert stored.error_message == "encoder exploded"
    assert not os.path.exists(input_path)
    assert os.listdir(dirs["outputs"]) == []
    assert queues[MediaType.VIDEO].state_of(job.id) == "failed"
    notifier.notify_job.assert_called_once()
    assert notifier.notify_job.call_args[0][0].status == JobStatus.FAILED


def test_queues_are_isolated(orchestrator, tracker, queues, redis_conn, dirs, make_input):
    _bind(tracker, dirs, FakeConverter(), MagicMock(spec=WebhookNotifier))
    video = orchestrator.submit(make_input("a.mp4"), "a.mp4", "webm")
    image = orchestrator.submit(make_input("b.png"), "b.png", "jpg")

    _drain(queues[MediaType.IMAGE], redis_conn)

    assert tracker.get(image.id).status == JobStatus.COMPLETED
    assert tracker.get(video.id).status == JobStatus.QUEUED


def test_cancelled_before_pickup_is_skipped(orchestrator, tracker, queues, redis_conn, dirs, make_input):
    converter = FakeConverter()
    _bind(tracker, dirs, converter, MagicMock(spec=WebhookNotifier))
    job = orchestrator.submit(make_input("a.md"), "a.md", "html")
    # record already removed, the queue entry lingers
    tracker.delete(job.id)

    _drain(queues[MediaType.DOCUMENT], redis_conn)

    assert converter.calls == 0


def test_cancel_during_retry_backoff(client, tracker, queues, redis_conn, dirs):
    """test a job waiting out its retry delay is removed and never runs again"""
    queues[MediaType.VIDEO] = ConversionQueue(MediaType.VIDEO, redis_conn, attempts=3, retry_intervals=[60, 60])
    converter = FailingConverter("encoder exploded")
    _bind(tracker, dirs, converter, MagicMock(spec=WebhookNotifier))
    response = client.post(
        "/api/convert/video",
        files={"file": ("clip.mp4", b"fake media content", "video/mp4")},
        data={"target_format": "webm"},
    )
    job_id = response.json()["job_id"]
    queue = queues[MediaType.VIDEO]

    _drain(queue, redis_conn)
    assert converter.calls == 1
    assert queue.state_of(job_id) == "delayed"
    assert tracker.get(job_id).status == JobStatus.PROCESSING

    response = client.delete(f"/api/jobs/{job_id}")
    assert response.status_code == 200
    assert client.get(f"/api/jobs/{job_id}").status_code == 404
    assert ScheduledJobRegistry(queue=queue.rq_queue).get_job_ids() == []

    _drain(queue, redis_conn)
    assert converter.calls == 1
    assert os.listdir(dirs["uploads"]) == []


def test_run_conversion_outside_rq_is_final(tracker, dirs, make_input):
    pipeline = MagicMock()
    worker.bind_pipeline(pipeline)

    worker.run_conversion("job-1")

    pipeline.run.assert_called_once_with("job-1", final_attempt=True)


def test_pool_sized_by_media_type():
    with patch("uniconvert.worker.Redis"), \
         patch("uniconvert.worker.configure_logging"), \
         patch("uniconvert.worker.WorkerPool") as pool_cls:
        worker.run_pool("document", burst=True)

    _, kwargs = pool_cls.call_args
    assert kwargs["num_workers"] == settings.DOCUMENT_CONCURRENCY
    queue = pool_cls.call_args[0][0][0]
    assert queue.name == "document-conversion"
    pool_cls.return_value.start.assert_called_once()
    assert pool_cls.return_value.start.call_args[1]["burst"] is True


def test_main_starts_requested_pools():
    with patch("uniconvert.worker.configure_logging"), \
         patch("uniconvert.worker.start_worker_pools") as start:
        process = MagicMock(exitcode=0)
        start.return_value = [process]
        assert worker.main(["--types", "image", "--burst"]) == 0

    start.assert_called_once_with(["image"], burst=True)
    process.join.assert_called_once()
