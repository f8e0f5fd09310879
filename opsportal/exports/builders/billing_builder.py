# opsportal/exports/builders/billing_builder.py

"""
Billing exports: invoices and the payments recorded against them.

Both carry a money summary that the document encoder prints under the table.
"""

from decimal import Decimal, InvalidOperation
from typing import Dict, Sequence

from opsportal.exports.columns import (
    EntityExporter,
    column,
    owned_by_customer,
    register_exporter,
)
from opsportal.exports.models import ExportEntityType


def _sum_column(rows: Sequence[Dict[str, str]], key: str) -> Decimal:
    total = Decimal("0.00")
    for row in rows:
        value = row.get(key)
        if not value:
            continue
        try:
            total += Decimal(value)
        except InvalidOperation:
            continue
    return total


def summarize_invoices(rows: Sequence[Dict[str, str]]) -> Dict[str, str]:
    """Invoice and paid totals over the exported rows (when selected)."""
    summary = {}
    if rows and "total" in rows[0]:
        summary["Invoice Total"] = str(_sum_column(rows, "total"))
    if rows and "paid" in rows[0]:
        summary["Invoice Paid"] = str(_sum_column(rows, "paid"))
    return summary


def summarize_payments(rows: Sequence[Dict[str, str]]) -> Dict[str, str]:
    if rows and "amount" in rows[0]:
        return {"Payments Sum": str(_sum_column(rows, "amount"))}
    return {}


INVOICES = register_exporter(EntityExporter(
    entity_type=ExportEntityType.INVOICES,
    title="Invoices Export",
    columns=(
        column("number", "Number", "invoice_number"),
        column("customer", "Customer", "customer.user.name"),
        column("status", "Status", "payment_status"),
        column("total", "Total", kind="money"),
        column("paid", "Paid", "amount_paid", kind="money"),
        column("due_date", "Due Date", kind="date"),
    ),
    scope_filter=owned_by_customer("customer_id"),
    summary=summarize_invoices,
))


PAYMENTS = register_exporter(EntityExporter(
    entity_type=ExportEntityType.PAYMENTS,
    title="Payments Export",
    columns=(
        column("id", "ID"),
        column("invoice", "Invoice", "invoice.invoice_number"),
        column("customer", "Customer", "invoice.customer.user.name"),
        column("amount", "Amount", kind="money"),
        column("method", "Method"),
        column("reference", "Reference"),
        column("recorded_by", "Recorded By"),
        column("date", "Date", "created_at", kind="date"),
    ),
    scope_filter=owned_by_customer("invoice.customer_id"),
    summary=summarize_payments,
))
