# opsportal/exports/builders/property_builder.py

"""
Real-estate exports: property listings and the inquiries made on them.
"""

from opsportal.exports.columns import (
    EntityExporter,
    column,
    owned_by_customer,
    owned_by_user,
    register_exporter,
)
from opsportal.exports.models import ExportEntityType


PROPERTIES = register_exporter(EntityExporter(
    entity_type=ExportEntityType.PROPERTIES,
    title="Properties Export",
    columns=(
        column("id", "ID"),
        column("title", "Title"),
        column("property_type", "Type"),
        column("status", "Status"),
        column("city", "City"),
        column("price", "Price", kind="money"),
        column("listed_by", "Listed By", "listed_by.name"),
        column("created", "Created", "created_at", kind="datetime"),
    ),
    scope_filter=owned_by_user("listed_by_id"),
))


INQUIRIES = register_exporter(EntityExporter(
    entity_type=ExportEntityType.INQUIRIES,
    title="Inquiries Export",
    columns=(
        column("id", "ID"),
        column("property", "Property", "property.title"),
        column("customer", "Customer", "customer.user.name"),
        column("email", "Email", "customer.user.email"),
        column("phone", "Phone", "customer.user.phone"),
        column("message", "Message"),
        column("status", "Status"),
        column("created", "Created", "created_at", kind="datetime"),
    ),
    scope_filter=owned_by_customer("customer_id"),
))
