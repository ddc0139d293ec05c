"""Cooperative cancellation for batch runs."""


class CancellationToken:
    """Pause signal passed explicitly into a run loop.

    Run loops check ``is_cancelled`` before launching each outer batch and
    each concurrent group. Requests already in flight are never interrupted.
    """

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self._cancelled})"
