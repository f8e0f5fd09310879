# opsportal/exports/models.py

"""
Database models for the export pipeline.

Stores export job metadata and status, per-user column preferences,
and the export event log that feeds export analytics.
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    JSON, DateTime, Enum, Index, Integer, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from opsportal.core.db import Base


class ExportStatus(str, PyEnum):
    """Export job status enumeration"""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    READY = "READY"
    FAILED = "FAILED"


class ExportEntityType(str, PyEnum):
    """Exportable record kinds"""
    SERVICES = "services"
    INVOICES = "invoices"
    CUSTOMERS = "customers"
    VEHICLES = "vehicles"
    PROPERTIES = "properties"
    INQUIRIES = "inquiries"
    EMERGENCIES = "emergencies"
    PAYMENTS = "payments"
    STAFF = "staff"
    MESSAGES = "messages"


class ExportFormat(str, PyEnum):
    """Export file format enumeration"""
    CSV = "csv"
    DOCUMENT = "document"


class DeliveryMode(str, PyEnum):
    """How the export is delivered to the caller"""
    SYNC = "sync"
    ASYNC = "async"
    STREAM = "stream"


TERMINAL_STATUSES = frozenset({ExportStatus.READY, ExportStatus.FAILED})


class ExportJob(Base):
    """
    Model for tracking background export jobs.

    ``result_ref`` is only ever set together with status READY and
    ``error_message`` only with status FAILED.
    """
    __tablename__ = "export_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    entity_type: Mapped[ExportEntityType] = mapped_column(
        Enum(ExportEntityType, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        index=True,
        comment="Record kind being exported",
    )

    format: Mapped[ExportFormat] = mapped_column(
        Enum(ExportFormat, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        comment="Export file format (csv, document)",
    )

    status: Mapped[ExportStatus] = mapped_column(
        Enum(ExportStatus),
        nullable=False,
        default=ExportStatus.PENDING,
        index=True,
        comment="Current status of export job",
    )

    celery_task_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        comment="Celery task ID for tracking background job",
    )

    filters: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
        comment="Normalized request parameters (dates, columns)",
    )

    result_ref: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
        unique=True,
        comment="Artifact store key of the generated file",
    )

    file_name: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Generated filename",
    )

    total_records: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Total number of records in export",
    )

    error_message: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Error details if export failed",
    )

    requested_by: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        comment="User who requested the export",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=datetime.utcnow,
        index=True,
        comment="When export was requested",
    )

    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
        comment="When a worker claimed the job",
    )

    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
        comment="When export finished (success or failure)",
    )

    def __repr__(self):
        return (
            f"<ExportJob(id={self.id}, type={self.entity_type}, "
            f"format={self.format}, status={self.status})>"
        )


class ExportColumnPreference(Base):
    """A user's saved column selection and order for one entity type."""
    __tablename__ = "export_column_preferences"
    __table_args__ = (
        UniqueConstraint("user_id", "entity_type", name="uq_export_column_preferences_user_entity"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    entity_type: Mapped[ExportEntityType] = mapped_column(
        Enum(ExportEntityType, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    columns: Mapped[list] = mapped_column(
        JSON, nullable=False, comment="Ordered list of column keys"
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    def __repr__(self):
        return (
            f"<ExportColumnPreference(user_id={self.user_id}, "
            f"entity_type={self.entity_type}, columns={self.columns})>"
        )


class ExportLog(Base):
    """One accepted export, sync or background. Input to export analytics."""
    __tablename__ = "export_logs"
    __table_args__ = (
        Index("ix_export_logs_created_at_entity_type", "created_at", "entity_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    entity_type: Mapped[ExportEntityType] = mapped_column(
        Enum(ExportEntityType, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    format: Mapped[ExportFormat] = mapped_column(
        Enum(ExportFormat, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    delivery_mode: Mapped[DeliveryMode] = mapped_column(
        Enum(DeliveryMode, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    filters: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )

    def __repr__(self):
        return f"<ExportLog(id={self.id}, type={self.entity_type}, user={self.user_id})>"
