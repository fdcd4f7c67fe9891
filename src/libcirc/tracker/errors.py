"""Error taxonomy for circulation operations.

Operation-level failures derive from ``CirculationError``. The circulation
engine turns them into failed results, so each scan or UI action maps to one
user-visible outcome. ``CirculationBug`` subclasses signal a broken invariant
and always propagate.
"""

from typing import Optional


class CirculationError(Exception):
    """Base exception for circulation failures reported to the actor."""

    code = "circulation_error"
    retryable = False

    def __init__(self, message: str, item_code: Optional[str] = None):
        self.message = message
        self.item_code = item_code
        super().__init__(message)


class NotFound(CirculationError):
    """Raised when an item code is unknown."""

    code = "not_found"

    def __init__(self, item_code: str):
        super().__init__(f"No item with code '{item_code}'", item_code)


class ItemUnavailable(CirculationError):
    """Raised when the item's status blocks the requested operation."""

    code = "item_unavailable"

    def __init__(self, item_code: str, status: str):
        self.status = status
        super().__init__(f"Item '{item_code}' is not available (status: {status})", item_code)


class NoOpenLoan(CirculationError):
    """Raised on return or renewal of an item that is not on loan."""

    code = "no_open_loan"

    def __init__(self, item_code: str):
        super().__init__(f"Item '{item_code}' has no open loan", item_code)


class BorrowingLimitExceeded(CirculationError):
    """Raised when a borrower is already at the item type's loan cap."""

    code = "borrowing_limit_exceeded"

    def __init__(self, borrower_id: str, item_type: str, limit: int, item_code: Optional[str] = None):
        self.borrower_id = borrower_id
        self.item_type = item_type
        self.limit = limit
        super().__init__(
            f"Borrower '{borrower_id}' already has {limit} {item_type} loan(s), the maximum allowed",
            item_code,
        )


class RenewalNotAllowed(CirculationError):
    """Raised when the item type's policy forbids renewal."""

    code = "renewal_not_allowed"

    def __init__(self, item_code: str, item_type: str):
        super().__init__(f"Items of type {item_type} cannot be renewed", item_code)


class RenewalLimitExceeded(CirculationError):
    """Raised when a loan has used all of its renewals."""

    code = "renewal_limit_exceeded"

    def __init__(self, item_code: str, max_renewals: int):
        self.max_renewals = max_renewals
        super().__init__(
            f"Item '{item_code}' has reached the renewal limit of {max_renewals}", item_code
        )


class BorrowerMismatch(CirculationError):
    """Raised when someone other than the current borrower asks to renew."""

    code = "borrower_mismatch"

    def __init__(self, item_code: str, borrower_id: str):
        self.borrower_id = borrower_id
        super().__init__(f"Item '{item_code}' is not on loan to '{borrower_id}'", item_code)


class PermissionDenied(CirculationError):
    """Raised when the authorizer refuses a privileged action."""

    code = "permission_denied"

    def __init__(self, actor_id: str, action: str):
        self.actor_id = actor_id
        self.action = action
        super().__init__(f"'{actor_id}' is not allowed to {action.replace('_', ' ')}")


class ConcurrentModification(CirculationError):
    """Raised when a compare-and-swap on an item or ledger row loses a race."""

    code = "concurrent_modification"
    retryable = True

    def __init__(self, item_code: Optional[str] = None):
        super().__init__(f"Item '{item_code}' was modified concurrently", item_code)


class StorageUnavailable(CirculationError):
    """Raised when the store keeps failing after retries."""

    code = "storage_unavailable"
    retryable = True


class CirculationBug(Exception):
    """Base exception for broken internal invariants."""

    pass


class InvalidTransition(CirculationBug):
    """Raised when a status/borrower/due-date combination breaks the item invariant."""

    pass


class LedgerDivergence(CirculationBug):
    """Raised when the borrower ledger disagrees with the open loans."""

    pass
