from __future__ import annotations

import random
from collections import Counter

from outreach_research.reveal import (
    INTERVALS_PER_WINDOW,
    REVEAL_INTERVAL,
    REVEAL_WINDOW,
    distribute_reveal_times,
)

from conftest import FROZEN_NOW


def test_window_constants():
    assert INTERVALS_PER_WINDOW == 672
    assert REVEAL_INTERVAL * INTERVALS_PER_WINDOW == REVEAL_WINDOW


def test_empty_input():
    assert distribute_reveal_times([], now=FROZEN_NOW) == []


def test_small_batch_gets_one_interval_each():
    scheduled = distribute_reveal_times(list(range(50)), now=FROZEN_NOW, rng=random.Random(1))

    assert sorted(s.item for s in scheduled) == list(range(50))
    assert sorted(s.interval for s in scheduled) == list(range(50))
    assert min(s.reveal_at for s in scheduled) == FROZEN_NOW
    assert max(s.reveal_at for s in scheduled) == FROZEN_NOW + 49 * REVEAL_INTERVAL
    for s in scheduled:
        assert s.reveal_at == FROZEN_NOW + s.interval * REVEAL_INTERVAL


def test_large_batch_shares_intervals_within_window():
    scheduled = distribute_reveal_times(list(range(2000)), now=FROZEN_NOW, rng=random.Random(2))

    assert len(scheduled) == 2000
    assert min(s.reveal_at for s in scheduled) == FROZEN_NOW
    assert max(s.reveal_at for s in scheduled) <= FROZEN_NOW + REVEAL_WINDOW
    assert max(s.interval for s in scheduled) == INTERVALS_PER_WINDOW - 1
    per_interval = Counter(s.interval for s in scheduled)
    assert max(per_interval.values()) <= 3


def test_single_item_reveals_immediately():
    [only] = distribute_reveal_times(["post"], now=FROZEN_NOW)
    assert only.interval == 0
    assert only.reveal_at == FROZEN_NOW


def test_order_is_shuffled_but_reproducible_with_seed():
    items = list(range(100))
    first = [s.item for s in distribute_reveal_times(items, now=FROZEN_NOW, rng=random.Random(7))]
    second = [s.item for s in distribute_reveal_times(items, now=FROZEN_NOW, rng=random.Random(7))]
    assert first == second
    assert first != items
    # Input is not mutated
    assert items == list(range(100))
