"""Re-export persistence protocols from core for convenience."""

from __future__ import annotations

from nomina.core.protocols import (
    ICacheBackend,
    IConceptStore,
    IInputSource,
    IPayrollStore,
    IPeriodStore,
)

__all__ = ["ICacheBackend", "IConceptStore", "IInputSource", "IPayrollStore", "IPeriodStore"]
