# opsportal/tests/conftest.py

from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import opsportal.exports.models  # noqa: F401
from opsportal.core.db import Base
from opsportal.exports.jobs import ExportJobManager
from opsportal.exports.record_store import InMemoryRecordStore
from opsportal.exports.storage import LocalArtifactStore


@pytest.fixture
def engine():
    """In-memory SQLite shared by every session of one test"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory):
    """Database session fixture for testing"""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def invoice_records():
    return [
        {
            "id": 1,
            "invoice_number": "INV-001",
            "customer_id": 10,
            "customer": {"user": {"name": "Acme, Inc."}},
            "payment_status": "paid",
            "total": Decimal("100.5"),
            "amount_paid": Decimal("100.5"),
            "due_date": date(2024, 1, 31),
            "created_at": datetime(2024, 1, 5, 9, 30),
        },
        {
            "id": 2,
            "invoice_number": "INV-002",
            "customer_id": 11,
            "customer": {"user": {"name": 'Bob "The Builder"'}},
            "payment_status": "unpaid",
            "total": 20,
            "amount_paid": 0,
            "due_date": date(2024, 2, 15),
            "created_at": datetime(2024, 1, 20, 16, 0),
        },
        {
            "id": 3,
            "invoice_number": "INV-003",
            "customer_id": 10,
            "customer": None,
            "payment_status": "draft",
            "total": None,
            "amount_paid": None,
            "due_date": None,
            "created_at": datetime(2024, 2, 10, 8, 0),
        },
    ]


@pytest.fixture
def record_store(invoice_records):
    return InMemoryRecordStore({"invoices": invoice_records})


@pytest.fixture
def dispatched():
    """Job ids handed to the worker queue"""
    return []


@pytest.fixture
def artifact_store(tmp_path):
    return LocalArtifactStore(str(tmp_path / "artifacts"))


@pytest.fixture
def job_manager(db_session, record_store, artifact_store, dispatched, tmp_path):
    def _dispatch(job_id):
        dispatched.append(job_id)
        return f"task-{job_id}-{len(dispatched)}"

    return ExportJobManager(
        db_session,
        record_store,
        artifacts=artifact_store,
        dispatcher=_dispatch,
        work_dir=str(tmp_path / "work"),
    )
