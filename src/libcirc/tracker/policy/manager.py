"""Policy book: per item-type borrowing rules.

Policies are loaded once, from the built-in defaults optionally overridden
by a JSON file, and never change during a circulation transaction.

The JSON file maps item type values to policy fields, e.g.::

    {"book": {"max_loans": 5, "loan_period_days": 21,
              "allow_renewal": true, "max_renewals": 3}}
"""

import json
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional, Union

from ..config import get_config
from ..db.schemas import ItemType
from .schemas import DEFAULT_POLICIES, BorrowingPolicy

logger = logging.getLogger(__name__)


class PolicyError(Exception):
    """Raised when a policy file cannot be loaded."""

    pass


class PolicyBook:
    """Read-only lookup of borrowing policy by item type."""

    def __init__(self, policies: Optional[Mapping[ItemType, BorrowingPolicy]] = None):
        """Initialize policy book.

        Args:
            policies: Policies to use; item types not present fall back to
                      the defaults.
        """
        merged = dict(DEFAULT_POLICIES)
        if policies:
            for item_type, policy in policies.items():
                item_type = ItemType(item_type)
                if policy.item_type != item_type:
                    raise PolicyError(
                        f"Policy for {item_type.value} declares item_type {policy.item_type.value}"
                    )
                merged[item_type] = policy
        self._policies = MappingProxyType(merged)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "PolicyBook":
        """Load policy overrides from a JSON file.

        Args:
            path: Path to the JSON policy file

        Returns:
            PolicyBook with the file's policies merged over the defaults
        """
        path = Path(path)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise PolicyError(f"Cannot read policy file {path}: {e}") from e

        if not isinstance(raw, dict):
            raise PolicyError(f"Policy file {path} must contain a JSON object")

        policies = {}
        for key, fields in raw.items():
            try:
                item_type = ItemType(key.lower())
            except ValueError as e:
                raise PolicyError(f"Unknown item type in policy file: {key}") from e
            try:
                policies[item_type] = BorrowingPolicy(item_type=item_type, **fields)
            except (TypeError, ValueError) as e:
                raise PolicyError(f"Invalid policy for {key}: {e}") from e

        logger.info("Loaded %d borrowing policies from %s", len(policies), path)
        return cls(policies)

    def for_type(self, item_type: Union[ItemType, str]) -> BorrowingPolicy:
        """Get the policy governing an item type."""
        return self._policies[ItemType(item_type)]

    def all(self) -> list[BorrowingPolicy]:
        """All policies, in item type order."""
        return [self._policies[t] for t in ItemType]


# Global policy book
_policies: Optional[PolicyBook] = None


def get_policies() -> PolicyBook:
    """Get or load the global policy book."""
    global _policies
    if _policies is None:
        config = get_config()
        if config.policy_file:
            _policies = PolicyBook.from_file(config.policy_file)
        else:
            _policies = PolicyBook()
    return _policies


def reset_policies() -> None:
    """Reset the global policy book. Used for testing."""
    global _policies
    _policies = None
