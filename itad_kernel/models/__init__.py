"""ORM models for the ITAD kernel."""

from itad_kernel.models.asset import AssetModel
from itad_kernel.models.audit_entry import AuditEntryModel

__all__ = ["AssetModel", "AuditEntryModel"]
