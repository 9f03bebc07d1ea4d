"""Staggered reveal scheduling over a rolling one-week window."""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Generic, TypeVar

from outreach_research.db.database import utc_now

T = TypeVar("T")

REVEAL_WINDOW = timedelta(days=7)
REVEAL_INTERVAL = timedelta(minutes=15)
INTERVALS_PER_WINDOW = int(REVEAL_WINDOW / REVEAL_INTERVAL)  # 672


@dataclass(frozen=True)
class ScheduledItem(Generic[T]):
    item: T
    interval: int
    reveal_at: datetime


def distribute_reveal_times(
    items: list[T],
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> list[ScheduledItem[T]]:
    """Spread items over 15-minute intervals of the next 7 days.

    Items are shuffled first so reveal order does not follow scrape order.
    Batches larger than the interval count share intervals; anything past
    the last interval piles into it rather than extending the window.
    Interval 0 always reveals at ``now``.
    """
    if not items:
        return []

    now = now or utc_now()
    rng = rng or random.Random()
    per_interval = max(1.0, len(items) / INTERVALS_PER_WINDOW)

    shuffled = list(items)
    rng.shuffle(shuffled)

    scheduled = []
    for index, item in enumerate(shuffled):
        interval = min(int(index // per_interval), INTERVALS_PER_WINDOW - 1)
        scheduled.append(ScheduledItem(
            item=item,
            interval=interval,
            reveal_at=now + interval * REVEAL_INTERVAL,
        ))
    return scheduled
