# opsportal/tests/test_jobs.py

import threading
from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import create_engine, update
from sqlalchemy.orm import sessionmaker

from opsportal.core.config import settings
from opsportal.core.db import Base
from opsportal.exports import tasks
from opsportal.exports.events import on_export_ready, remove_handler
from opsportal.exports.exceptions import JobNotFound, JobNotReady, UnknownColumn
from opsportal.exports.jobs import ExportJobManager, celery_dispatcher
from opsportal.exports.models import ExportJob, ExportLog, ExportStatus
from opsportal.exports.record_store import configure_record_store


class FailingStore:
    def stream(self, entity_type, timestamp_field, start, end):
        raise ConnectionError("database went away")
        yield  # pragma: no cover

    def count(self, entity_type, timestamp_field, start, end):
        raise ConnectionError("database went away")


@pytest.fixture
def ready_events():
    events = []

    def _collect(event):
        events.append(event)

    on_export_ready(_collect)
    yield events
    remove_handler(_collect)


class TestEnqueue:

    def test_enqueue_creates_pending_job_and_dispatches(self, job_manager, dispatched, db_session):
        result = job_manager.enqueue("u1", "invoices", columns=["number", "total"])

        assert result.status == ExportStatus.PENDING
        assert result.url is None
        assert dispatched == [result.job_id]

        job = db_session.get(ExportJob, result.job_id)
        assert job.status == ExportStatus.PENDING
        assert job.requested_by == "u1"
        assert job.celery_task_id == f"task-{result.job_id}-1"
        assert job.filters["columns"] == ["number", "total"]
        assert db_session.query(ExportLog).count() == 1

    def test_validation_errors_raise_before_a_job_exists(self, job_manager, dispatched, db_session):
        with pytest.raises(UnknownColumn):
            job_manager.enqueue("u1", "invoices", columns=["colour"])
        assert db_session.query(ExportJob).count() == 0
        assert dispatched == []

    def test_small_exports_finish_inline(self, job_manager, dispatched, monkeypatch):
        monkeypatch.setattr(settings, "export_inline_row_limit", 10)

        result = job_manager.enqueue("u1", "invoices")

        assert result.status == ExportStatus.READY
        assert result.url == f"/exports/jobs/{result.job_id}/download"
        assert dispatched == []

    def test_inline_limit_is_respected(self, job_manager, dispatched, monkeypatch):
        monkeypatch.setattr(settings, "export_inline_row_limit", 2)

        result = job_manager.enqueue("u1", "invoices")

        assert result.status == ExportStatus.PENDING
        assert dispatched == [result.job_id]

    def test_dispatch_pending_resends_unclaimed_jobs(self, job_manager, dispatched):
        first = job_manager.enqueue("u1", "invoices").job_id
        second = job_manager.enqueue("u1", "invoices").job_id
        job_manager.process(first)
        dispatched.clear()

        assert job_manager.dispatch_pending() == [second]
        assert dispatched == [second]

    def test_celery_dispatcher_sends_job_id_to_export_queue(self):
        with patch.object(tasks.process_export_job, "apply_async", return_value=MagicMock(id="celery-1")) as send:
            assert celery_dispatcher(7) == "celery-1"
        send.assert_called_once_with(args=[7], queue=settings.export_queue_name)


class TestClaim:

    def test_claim_is_exclusive(self, job_manager):
        job_id = job_manager.enqueue("u1", "invoices").job_id

        assert job_manager.claim(job_id) is True
        assert job_manager.claim(job_id) is False

    def test_concurrent_claims_have_one_winner(self, tmp_path, record_store):
        engine = create_engine(f"sqlite:///{tmp_path / 'claims.db'}", connect_args={"timeout": 30})
        Base.metadata.create_all(engine)
        Session = sessionmaker(bind=engine)

        setup = Session()
        job_id = ExportJobManager(setup, record_store, dispatcher=lambda _id: None).enqueue("u1", "invoices").job_id
        setup.close()

        results = []
        barrier = threading.Barrier(8)

        def _worker():
            db = Session()
            try:
                manager = ExportJobManager(db, record_store, dispatcher=lambda _id: None)
                barrier.wait()
                results.append(manager.claim(job_id))
            finally:
                db.close()

        threads = [threading.Thread(target=_worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        engine.dispose()

        assert results.count(True) == 1
        assert results.count(False) == 7


class TestProcess:

    def test_successful_job_becomes_ready(self, job_manager, artifact_store, ready_events, tmp_path):
        job_id = job_manager.enqueue("u1", "invoices", columns=["number"]).job_id

        job = job_manager.process(job_id)

        assert job.status == ExportStatus.READY
        assert job.total_records == 3
        assert job.error_message is None
        assert job.started_at is not None and job.completed_at is not None
        assert job.result_ref.startswith(f"exports/{job_id}/invoices_export_")
        assert artifact_store.local_path(job.result_ref).read_bytes() == (
            b"Number\r\nINV-001\r\nINV-002\r\nINV-003\r\n"
        )
        # Scratch files are gone
        assert not (tmp_path / "work" / str(job_id)).exists()

        assert len(ready_events) == 1
        assert ready_events[0].job_id == job_id
        assert ready_events[0].download_url == f"/exports/jobs/{job_id}/download"
        assert ready_events[0].total_records == 3

    def test_document_job(self, job_manager, artifact_store):
        job_id = job_manager.enqueue("u1", "invoices", format="document").job_id

        job = job_manager.process(job_id)

        assert job.status == ExportStatus.READY
        assert job.file_name.endswith(".pdf")
        assert artifact_store.local_path(job.result_ref).read_bytes().startswith(b"%PDF")

    def test_failure_is_recorded_on_the_job(self, db_session, artifact_store, ready_events, tmp_path):
        manager = ExportJobManager(
            db_session, FailingStore(), artifacts=artifact_store,
            dispatcher=lambda _id: None, work_dir=str(tmp_path / "work"),
        )
        job_id = manager.enqueue("u1", "invoices").job_id

        job = manager.process(job_id)

        assert job.status == ExportStatus.FAILED
        assert "database went away" in job.error_message
        assert job.result_ref is None
        assert job.completed_at is not None
        assert ready_events == []
        assert not (tmp_path / "work" / str(job_id)).exists()

    def test_document_over_job_ceiling_fails(self, job_manager, monkeypatch):
        monkeypatch.setattr(settings, "export_job_document_row_ceiling", 2)
        job_id = job_manager.enqueue("u1", "invoices", format="document").job_id

        job = job_manager.process(job_id)

        assert job.status == ExportStatus.FAILED
        assert "limited to 2 rows" in job.error_message

    def test_finished_jobs_are_not_processed_again(self, job_manager, ready_events):
        job_id = job_manager.enqueue("u1", "invoices").job_id
        first = job_manager.process(job_id)

        assert job_manager.process(job_id) is None
        assert job_manager.status(job_id, "u1").result_ref == first.result_ref
        assert len(ready_events) == 1

    def test_failed_jobs_are_not_retried(self, db_session, artifact_store, tmp_path):
        manager = ExportJobManager(
            db_session, FailingStore(), artifacts=artifact_store,
            dispatcher=lambda _id: None, work_dir=str(tmp_path / "work"),
        )
        job_id = manager.enqueue("u1", "invoices").job_id
        manager.process(job_id)

        assert manager.process(job_id) is None
        assert manager.status(job_id, "u1").status == ExportStatus.FAILED


class TestStaleJobs:

    def _age(self, db_session, job_id, seconds):
        db_session.execute(
            update(ExportJob)
            .where(ExportJob.id == job_id)
            .values(started_at=datetime.utcnow() - timedelta(seconds=seconds))
        )
        db_session.commit()

    def test_processing_job_past_time_limit_fails(self, job_manager, db_session, monkeypatch):
        monkeypatch.setattr(settings, "export_job_time_limit", 600)
        stuck = job_manager.enqueue("u1", "invoices").job_id
        running = job_manager.enqueue("u1", "invoices").job_id
        pending = job_manager.enqueue("u1", "invoices").job_id
        job_manager.claim(stuck)
        job_manager.claim(running)
        self._age(db_session, stuck, 601)
        self._age(db_session, running, 60)

        assert job_manager.fail_stale() == [stuck]

        job = job_manager.status(stuck, "u1")
        db_session.refresh(job)
        assert job.status == ExportStatus.FAILED
        assert "600 seconds" in job.error_message
        assert job.completed_at is not None
        assert job_manager.status(running, "u1").status == ExportStatus.PROCESSING
        assert job_manager.status(pending, "u1").status == ExportStatus.PENDING

    def test_terminal_jobs_are_left_alone(self, job_manager, db_session):
        job_id = job_manager.enqueue("u1", "invoices").job_id
        job_manager.process(job_id)
        self._age(db_session, job_id, 10 * 60 * 60)

        assert job_manager.fail_stale(max_age_seconds=60) == []
        assert job_manager.status(job_id, "u1").status == ExportStatus.READY

    def test_stale_job_cannot_complete_afterwards(self, job_manager, db_session):
        job_id = job_manager.enqueue("u1", "invoices").job_id
        job_manager.claim(job_id)
        self._age(db_session, job_id, 120)
        job_manager.fail_stale(max_age_seconds=60)

        assert job_manager._complete(job_id, ExportStatus.READY, result_ref="late") is False
        job = job_manager.status(job_id, "u1")
        db_session.refresh(job)
        assert job.status == ExportStatus.FAILED
        assert job.result_ref is None


class TestQueries:

    def test_status_is_owner_scoped(self, job_manager):
        job_id = job_manager.enqueue("u1", "invoices").job_id

        assert job_manager.status(job_id, "u1").id == job_id
        with pytest.raises(JobNotFound):
            job_manager.status(job_id, "u2")
        with pytest.raises(JobNotFound):
            job_manager.status(9999, "u1")

    def test_download_requires_ready(self, job_manager):
        job_id = job_manager.enqueue("u1", "invoices").job_id

        with pytest.raises(JobNotReady) as exc_info:
            job_manager.download_url(job_id, "u1")
        assert exc_info.value.status == "PENDING"

        job_manager.process(job_id)
        # Local artifacts are served by path, not URL
        assert job_manager.download_url(job_id, "u1") is None

    def test_list_jobs_newest_first_and_owner_scoped(self, job_manager):
        ids = [job_manager.enqueue("u1", "invoices").job_id for _ in range(3)]
        job_manager.enqueue("u2", "invoices")
        job_manager.process(ids[0])

        items, total = job_manager.list_jobs("u1", page=1, per_page=2)
        assert total == 3
        assert [j.id for j in items] == [ids[2], ids[1]]

        items, total = job_manager.list_jobs("u1", status=ExportStatus.READY)
        assert total == 1 and items[0].id == ids[0]


class TestCeleryTask:

    def test_task_processes_job(self, session_factory, record_store, tmp_path, monkeypatch):
        monkeypatch.setattr(tasks, "SessionLocal", session_factory)
        monkeypatch.setattr(settings, "export_output_dir", str(tmp_path))
        configure_record_store(lambda db: record_store)
        try:
            db = session_factory()
            job_id = ExportJobManager(db, record_store, dispatcher=lambda _id: None).enqueue("u1", "invoices").job_id
            db.close()

            result = tasks.process_export_job(job_id)
            assert result["status"] == "success"
            assert result["record_count"] == 3

            assert tasks.process_export_job(job_id)["status"] == "skipped"
        finally:
            configure_record_store(None)

    def test_stale_sweep_task(self, session_factory, record_store, monkeypatch):
        monkeypatch.setattr(tasks, "SessionLocal", session_factory)
        configure_record_store(lambda db: record_store)
        try:
            db = session_factory()
            manager = ExportJobManager(db, record_store, dispatcher=lambda _id: None)
            job_id = manager.enqueue("u1", "invoices").job_id
            manager.claim(job_id)
            db.close()

            assert tasks.fail_stale_jobs(max_age_seconds=3600) == {"failed": []}
            assert tasks.fail_stale_jobs(max_age_seconds=-1) == {"failed": [job_id]}
        finally:
            configure_record_store(None)

    def test_task_without_record_store_fails_loudly(self, session_factory, monkeypatch):
        monkeypatch.setattr(tasks, "SessionLocal", session_factory)
        with pytest.raises(RuntimeError):
            tasks.process_export_job(1)
