"""Rolling window arithmetic for per-identity grant caps.

A grant counts toward the window while its timestamp lies in
``[now - window_seconds, now]``.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class Grant:
    """A reserved or committed grant in an identity's window."""

    request_ref: str
    amount: Decimal
    granted_at: float


def in_window(grants: Iterable[Grant], now: float, window_seconds: float) -> list[Grant]:
    """Return grants still inside the window, oldest first."""
    cutoff = now - window_seconds
    return sorted(
        (g for g in grants if g.granted_at >= cutoff),
        key=lambda g: g.granted_at,
    )


def amount_in_window(grants: Iterable[Grant], now: float, window_seconds: float) -> Decimal:
    """Sum of grant amounts inside the window."""
    return sum((g.amount for g in in_window(grants, now, window_seconds)), Decimal("0"))


def next_eligible_time(
    grants: Iterable[Grant],
    amount: Decimal,
    cap: Decimal,
    now: float,
    window_seconds: float,
) -> float | None:
    """Earliest time at which ``amount`` fits under ``cap``.

    Returns
    -------
    float | None
        None if the amount fits now, otherwise the Unix timestamp at which
        enough old grants have left the window.
    """
    current = in_window(grants, now, window_seconds)
    used = sum((g.amount for g in current), Decimal("0"))
    if used + amount <= cap:
        return None

    freed = Decimal("0")
    for grant in current:
        freed += grant.amount
        if used - freed + amount <= cap:
            return grant.granted_at + window_seconds

    # amount alone exceeds the cap
    return now + window_seconds
