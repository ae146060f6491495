"""ORM models. Importing this package registers every table on Base.metadata."""

from pharmacy_kernel.models.inventory import InventoryItemModel
from pharmacy_kernel.models.returns import (
    AppliedOperationModel,
    ReplacementLinkModel,
    ReturnRecordModel,
)
from pharmacy_kernel.models.sale import SaleLineItemModel, SaleModel
from pharmacy_kernel.models.sequence import ScopedSequenceModel

__all__ = [
    "AppliedOperationModel",
    "InventoryItemModel",
    "ReplacementLinkModel",
    "ReturnRecordModel",
    "SaleLineItemModel",
    "SaleModel",
    "ScopedSequenceModel",
]
