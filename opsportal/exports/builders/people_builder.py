# opsportal/exports/builders/people_builder.py

"""
People exports: customers, staff accounts and internal messages.
"""

from typing import Any

from opsportal.exports.columns import (
    EntityExporter,
    ExportScope,
    column,
    owned_by_customer,
    owned_by_user,
    register_exporter,
    render_value,
    resolve_path,
)
from opsportal.exports.models import ExportEntityType


def _staff_scope(record: Any, scope: ExportScope) -> bool:
    # Staff records are never customer-owned.
    return not scope.restricted


def _not_customer_account(record: Any) -> bool:
    return render_value(resolve_path(record, "role")).upper() != "CUSTOMER"


CUSTOMERS = register_exporter(EntityExporter(
    entity_type=ExportEntityType.CUSTOMERS,
    title="Customers Export",
    columns=(
        column("name", "Name", "user.name"),
        column("email", "Email", "user.email"),
        column("phone", "Phone", "user.phone"),
        column("created", "Created", "created_at", kind="date"),
    ),
    scope_filter=owned_by_customer("id"),
))


STAFF = register_exporter(EntityExporter(
    entity_type=ExportEntityType.STAFF,
    title="Staff Export",
    columns=(
        column("name", "Name"),
        column("email", "Email"),
        column("phone", "Phone"),
        column("role", "Role"),
        column("created", "Created", "created_at", kind="date"),
    ),
    scope_filter=_staff_scope,
    record_filter=_not_customer_account,
))


MESSAGES = register_exporter(EntityExporter(
    entity_type=ExportEntityType.MESSAGES,
    title="Messages Export",
    columns=(
        column("id", "ID"),
        column("subject", "Subject"),
        column("sender", "Sender", "user.name"),
        column("recipient", "Recipient", "recipient.name"),
        column("is_read", "Is Read"),
        column("created", "Created", "created_at", kind="date"),
    ),
    scope_filter=owned_by_user("user_id", "recipient_id"),
))
