"""Item lending module.

Provides functionality for:
- Checking items out against per-type borrowing limits
- Returning items, on time or overdue
- Renewing loans within policy limits
- Barcode scan handling
"""

from .manager import CirculationEngine
from .schemas import CirculationResult, ScanIntent

__all__ = [
    "CirculationEngine",
    "CirculationResult",
    "ScanIntent",
]
