"""
Entity exporters.

Importing this package registers one exporter per supported entity type.
"""

from opsportal.exports.builders import (  # noqa: F401
    automotive_builder,
    billing_builder,
    people_builder,
    property_builder,
)
