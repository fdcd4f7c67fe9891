"""Item registry module.

Provides functionality for:
- Registering items by barcode
- Status queries evaluated at read time
- Guarded status transitions
"""

from .manager import ItemRegistry, check_item_invariant

__all__ = [
    "ItemRegistry",
    "check_item_invariant",
]
