"""Choosing which loaded payments go into a batch fetch."""

from collections.abc import Iterable

from ar_sync.models import WorkItem


class PaymentSelection:
    """Loaded candidate payments plus the operator's selection.

    Selected payments are always returned in load order, which for payments
    loaded from Supabase is newest application date first.
    """

    def __init__(self, payments: Iterable[WorkItem] = ()):
        self._payments: list[WorkItem] = list(payments)
        self._selected: set[str] = set()

    @property
    def payments(self) -> list[WorkItem]:
        return list(self._payments)

    def load(self, payments: Iterable[WorkItem]) -> None:
        """Replace the candidates; selections no longer present are dropped."""
        self._payments = list(payments)
        ids = {p.id for p in self._payments}
        self._selected &= ids

    def filter(self, term: str | None = None) -> list[WorkItem]:
        """Payments whose reference number or customer id contains ``term``."""
        if not term or not term.strip():
            return list(self._payments)
        needle = term.strip().lower()
        return [
            p
            for p in self._payments
            if needle in p.reference_number.lower()
            or (p.customer_id is not None and needle in p.customer_id.lower())
        ]

    def toggle(self, payment_id: str) -> bool:
        """Flip one payment's selection; returns whether it is now selected."""
        if payment_id in self._selected:
            self._selected.discard(payment_id)
            return False
        if not any(p.id == payment_id for p in self._payments):
            raise KeyError(payment_id)
        self._selected.add(payment_id)
        return True

    def select_all(self, term: str | None = None) -> None:
        self._selected = {p.id for p in self.filter(term)}

    def select_first(self, count: int, term: str | None = None) -> None:
        self._selected = {p.id for p in self.filter(term)[: max(count, 0)]}

    def clear(self) -> None:
        self._selected = set()

    def is_selected(self, payment_id: str) -> bool:
        return payment_id in self._selected

    def selected_items(self) -> list[WorkItem]:
        return [p for p in self._payments if p.id in self._selected]

    def __len__(self) -> int:
        return len(self._selected)
