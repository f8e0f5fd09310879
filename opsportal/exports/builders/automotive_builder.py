# opsportal/exports/builders/automotive_builder.py

"""
Automotive exports: service requests, vehicles and emergency call-outs.
"""

from opsportal.exports.columns import (
    EntityExporter,
    column,
    owned_by_customer,
    owned_by_user,
    register_exporter,
)
from opsportal.exports.models import ExportEntityType


SERVICES = register_exporter(EntityExporter(
    entity_type=ExportEntityType.SERVICES,
    title="Services Export",
    columns=(
        column("id", "ID"),
        column("service_type", "Type"),
        column("status", "Status"),
        column("customer", "Customer", "customer.user.name"),
        column("created", "Created", "created_at", kind="datetime"),
    ),
    scope_filter=owned_by_customer("customer_id"),
))


VEHICLES = register_exporter(EntityExporter(
    entity_type=ExportEntityType.VEHICLES,
    title="Vehicles Export",
    columns=(
        column("id", "ID"),
        column("make", "Make"),
        column("model", "Model"),
        column("year", "Year"),
        column("license_plate", "License Plate"),
        column("customer", "Customer", "customer.user.name"),
        column("created", "Created", "created_at", kind="date"),
    ),
    scope_filter=owned_by_customer("customer_id"),
))


# Emergencies are raised by portal users, not customers, so a restricted
# scope keeps only the requester's own call-outs.
EMERGENCIES = register_exporter(EntityExporter(
    entity_type=ExportEntityType.EMERGENCIES,
    title="Emergencies Export",
    columns=(
        column("id", "ID"),
        column("title", "Title"),
        column("user", "User", "user.name"),
        column("phone", "Phone", "user.phone"),
        column("status", "Status"),
        column("priority", "Priority"),
        column("location", "Location"),
        column("resolved_at", "Resolved At", kind="datetime"),
        column("created", "Created", "created_at", kind="datetime"),
    ),
    scope_filter=owned_by_user("user_id"),
))
