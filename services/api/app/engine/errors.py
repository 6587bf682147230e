from __future__ import annotations


class EngineError(Exception):
    """Base class for order composition errors."""


class LineItemError(EngineError, ValueError):
    """A line item would violate its invariants."""


class InvalidMarkupError(EngineError, ValueError):
    def __init__(self, markup_percentage: int) -> None:
        super().__init__(f"Markup must be between -100 and 100, got {markup_percentage}")
        self.markup_percentage = markup_percentage


class ItemNotInCartError(EngineError, KeyError):
    def __init__(self, item_id: str) -> None:
        super().__init__(item_id)
        self.item_id = item_id

    def __str__(self) -> str:
        return f"Item not in cart: {self.item_id}"


class StockError(EngineError):
    """A quantity change was refused by the stock guard."""


class InsufficientStockError(StockError):
    def __init__(self, item_id: str, requested: int, available: int) -> None:
        super().__init__(
            f"Only {available} unit(s) of {item_id} available, requested {requested}"
        )
        self.item_id = item_id
        self.requested = requested
        self.available = available


class BouquetQuantityPinnedError(StockError):
    def __init__(self, item_id: str) -> None:
        super().__init__(f"Bouquet {item_id} is a single instance; quantity is always 1")
        self.item_id = item_id


class OrderValidationError(EngineError):
    """Client-side validation failed; no network call was made."""

    def __init__(self, issues: list[str]) -> None:
        super().__init__("; ".join(issues))
        self.issues = issues


class InvalidTransitionError(EngineError):
    """The requested status change is not one this engine may request."""


class TransitionRejectedError(EngineError):
    """The backend refused a status change. The message is the server's reason."""

    def __init__(self, reason: str, *, current_status: str, requested_status: str) -> None:
        super().__init__(reason)
        self.reason = reason
        self.current_status = current_status
        self.requested_status = requested_status


class SaveInProgressError(EngineError):
    def __init__(self) -> None:
        super().__init__("A save is already in progress for this order")


class PartialSaveError(EngineError):
    """A multi-call save stopped partway. Applied calls are not rolled back."""

    def __init__(self, failed_step: str, reason: str, applied: list[str]) -> None:
        done = ", ".join(applied) if applied else "nothing"
        super().__init__(f"Save failed at {failed_step}: {reason} (already applied: {done})")
        self.failed_step = failed_step
        self.reason = reason
        self.applied = applied
