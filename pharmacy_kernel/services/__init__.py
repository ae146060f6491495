"""Kernel services shared by the return flow."""

from pharmacy_kernel.services.sequence_service import (
    AllocatedSequence,
    SequenceAllocator,
)

__all__ = ["AllocatedSequence", "SequenceAllocator"]
