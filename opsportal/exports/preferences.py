# opsportal/exports/preferences.py

from typing import List, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from opsportal.exports.columns import EntityExporter, get_exporter
from opsportal.exports.exceptions import ExportValidationError, UnknownColumn
from opsportal.exports.models import ExportColumnPreference
from opsportal.utils.logger import get_logger

logger = get_logger(__name__)


def check_columns(exporter: EntityExporter, columns: Sequence[str]) -> List[str]:
    """
    Validate a column list against the entity's schema.

    Every key must exist in the schema; any unknown key rejects the whole
    list. Duplicates are collapsed keeping the first occurrence.
    """
    unknown = [c for c in columns if not exporter.has_column(c)]
    if unknown:
        raise UnknownColumn(exporter.entity_type.value, dict.fromkeys(unknown))
    return list(dict.fromkeys(columns))


class ColumnPreferenceStore:
    """
    Data Access Layer for per-user export column preferences.

    One row per (user, entity type). Saving overwrites the previous value.
    """

    def __init__(self, db: Session):
        self.db = db

    def _get_row(self, user_id: str, entity_type) -> Optional[ExportColumnPreference]:
        stmt = select(ExportColumnPreference).where(
            ExportColumnPreference.user_id == str(user_id),
            ExportColumnPreference.entity_type == entity_type,
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def saved(self, user_id: str, entity_type) -> Optional[List[str]]:
        """
        Return the saved preference, or None when there is none.

        Keys that have since left the schema are dropped; if nothing
        survives the preference is treated as absent.
        """
        exporter = get_exporter(entity_type)
        row = self._get_row(user_id, exporter.entity_type)
        if row is None:
            return None
        columns = [c for c in row.columns or [] if exporter.has_column(c)]
        if len(columns) != len(row.columns or []):
            logger.warning(
                "Dropping stale preference columns",
                user_id=user_id,
                entity_type=exporter.entity_type.value,
                stale=[c for c in row.columns if not exporter.has_column(c)],
            )
        return columns or None

    def get(self, user_id: str, entity_type) -> List[str]:
        """Ordered columns for the user: saved preference, else schema default."""
        exporter = get_exporter(entity_type)
        return self.saved(user_id, exporter.entity_type) or exporter.default_columns

    def set(self, user_id: str, entity_type, columns: Sequence[str]) -> List[str]:
        """
        Validate and store a preference, replacing any previous one.

        Raises:
            UnknownColumn: if any key is outside the schema
            ExportValidationError: if the list is empty
        """
        exporter = get_exporter(entity_type)
        if not columns:
            raise ExportValidationError(
                "At least one column must be selected", field="columns", value=[]
            )
        columns = check_columns(exporter, columns)

        row = self._get_row(user_id, exporter.entity_type)
        if row is None:
            row = ExportColumnPreference(
                user_id=str(user_id), entity_type=exporter.entity_type, columns=columns
            )
            self.db.add(row)
        else:
            row.columns = columns
        self.db.commit()

        logger.info(
            "Saved export column preference",
            user_id=user_id,
            entity_type=exporter.entity_type.value,
            columns=columns,
        )
        return columns

    def clear(self, user_id: str, entity_type) -> None:
        """Remove the saved preference so the schema default applies again."""
        exporter = get_exporter(entity_type)
        self.db.execute(
            delete(ExportColumnPreference).where(
                ExportColumnPreference.user_id == str(user_id),
                ExportColumnPreference.entity_type == exporter.entity_type,
            )
        )
        self.db.commit()
        logger.info(
            "Cleared export column preference",
            user_id=user_id,
            entity_type=exporter.entity_type.value,
        )
