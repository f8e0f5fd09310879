# opsportal/exports/record_store.py

"""
Record stores - the read interface to the portal's durable records.

The export pipeline never queries domain tables directly. It asks a record
store for the records of one entity type whose timestamp falls inside a
range, and consumes them lazily.
"""

from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from opsportal.exports.columns import resolve_path
from opsportal.utils.logger import get_logger

logger = get_logger(__name__)


class RecordStore(Protocol):
    """Narrow read interface over the record store."""

    def stream(
        self,
        entity_type: str,
        timestamp_field: str,
        start: Optional[datetime],
        end: Optional[datetime],
    ) -> Iterable[Any]:
        ...

    def count(
        self,
        entity_type: str,
        timestamp_field: str,
        start: Optional[datetime],
        end: Optional[datetime],
    ) -> int:
        ...


def _in_range(value: Any, start: Optional[datetime], end: Optional[datetime]) -> bool:
    if start is None and end is None:
        return True
    if value is None:
        return False
    if not isinstance(value, datetime):
        value = datetime.combine(value, datetime.min.time())
    if start is not None and value < start:
        return False
    if end is not None and value > end:
        return False
    return True


class InMemoryRecordStore:
    """
    Record store over in-process lists of records (mappings or objects).

    Used for fixtures, tests and small embedded deployments.
    """

    def __init__(self, records: Optional[Mapping[str, List[Any]]] = None):
        self._records: Dict[str, List[Any]] = {
            str(getattr(k, "value", k)): list(v) for k, v in (records or {}).items()
        }

    def add(self, entity_type, *records: Any) -> None:
        key = str(getattr(entity_type, "value", entity_type))
        self._records.setdefault(key, []).extend(records)

    def stream(self, entity_type, timestamp_field, start, end) -> Iterator[Any]:
        key = str(getattr(entity_type, "value", entity_type))
        for record in self._records.get(key, []):
            if _in_range(resolve_path(record, timestamp_field), start, end):
                yield record

    def count(self, entity_type, timestamp_field, start, end) -> int:
        return sum(1 for _ in self.stream(entity_type, timestamp_field, start, end))


class SqlAlchemyRecordStore:
    """
    Record store backed by the host application's ORM models.

    Uses server-side cursors (``stream_results``) with ``yield_per`` batching
    so large tables are never loaded in full.

    Args:
        session: Database session
        models: Entity type -> ORM model class
        options: Entity type -> callable returning loader options
            (many-to-one ``joinedload`` or ``selectinload``) for the
            relationships its columns read
        batch_size: Rows fetched per round trip
    """

    def __init__(
        self,
        session: Session,
        models: Mapping[str, Any],
        options: Optional[Mapping[str, Callable[[], Iterable[Any]]]] = None,
        batch_size: int = 500,
    ):
        self.session = session
        self.models = {str(getattr(k, "value", k)): v for k, v in models.items()}
        self.options = {str(getattr(k, "value", k)): v for k, v in (options or {}).items()}
        self.batch_size = batch_size

    def _model(self, entity_type):
        key = str(getattr(entity_type, "value", entity_type))
        model = self.models.get(key)
        if model is None:
            raise LookupError(f"No model mapped for entity type '{key}'")
        return key, model

    def _where(self, stmt, model, timestamp_field, start, end):
        ts_column = getattr(model, timestamp_field)
        if start is not None:
            stmt = stmt.where(ts_column >= start)
        if end is not None:
            stmt = stmt.where(ts_column <= end)
        return stmt

    def stream(self, entity_type, timestamp_field, start, end) -> Iterator[Any]:
        key, model = self._model(entity_type)
        stmt = self._where(select(model), model, timestamp_field, start, end)
        loader = self.options.get(key)
        if loader is not None:
            stmt = stmt.options(*loader())
        stmt = stmt.order_by(model.id.asc()).execution_options(
            stream_results=True, yield_per=self.batch_size
        )
        logger.debug("Streaming records", entity_type=key, batch_size=self.batch_size)
        result = self.session.execute(stmt)
        for record in result.scalars():
            yield record

    def count(self, entity_type, timestamp_field, start, end) -> int:
        key, model = self._model(entity_type)
        stmt = self._where(select(func.count()).select_from(model), model, timestamp_field, start, end)
        return self.session.execute(stmt).scalar_one()


RecordStoreFactory = Callable[[Session], RecordStore]

_record_store_factory: Optional[RecordStoreFactory] = None


def configure_record_store(factory: Optional[RecordStoreFactory]) -> None:
    """
    Register how the API and the workers obtain a record store.

    ``factory`` receives a database session and returns a ``RecordStore``.
    The host application calls this at start-up, typically with a
    ``SqlAlchemyRecordStore`` over its own models.
    """
    global _record_store_factory
    _record_store_factory = factory


def build_record_store(db: Session) -> RecordStore:
    if _record_store_factory is None:
        raise RuntimeError(
            "No record store configured; call "
            "opsportal.exports.record_store.configure_record_store() at start-up"
        )
    return _record_store_factory(db)
