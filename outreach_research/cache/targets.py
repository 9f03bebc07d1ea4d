"""Per-business research target tracking (the businesses.targets JSON array)."""

from __future__ import annotations

import json
import logging
from datetime import datetime

from outreach_research.db.database import Database, utc_now
from outreach_research.models import ResearchTarget, TargetStatus

logger = logging.getLogger(__name__)


def parse_targets(raw: str | None) -> list[ResearchTarget]:
    if not raw:
        return []
    return [ResearchTarget.model_validate(t) for t in json.loads(raw)]


def dump_targets(targets: list[ResearchTarget]) -> str:
    return json.dumps([t.model_dump(mode="json") for t in targets])


def next_unfulfilled(targets: list[ResearchTarget]) -> tuple[int, ResearchTarget] | None:
    """First target that has not been processed yet, with its index."""
    for index, target in enumerate(targets):
        if not target.is_fulfilled:
            return index, target
    return None


class TargetStore:
    """Reads and stamps research targets stored on the business row."""

    def __init__(self, db: Database):
        self.db = db

    def get_targets(self, business_id: str) -> list[ResearchTarget]:
        row = self.db.fetchone("SELECT targets FROM businesses WHERE id = ?", (business_id,))
        if not row:
            return []
        return parse_targets(row["targets"])

    def businesses_with_pending_targets(self) -> list[dict]:
        """Active businesses with at least one unfulfilled target."""
        rows = self.db.fetchall(
            "SELECT id, user_id, name, targets FROM businesses "
            "WHERE is_active = 1 AND targets IS NOT NULL ORDER BY created_at"
        )
        pending = []
        for row in rows:
            try:
                targets = parse_targets(row["targets"])
            except ValueError as e:
                logger.warning("Skipping business %s with unreadable targets: %s", row["id"], e)
                continue
            if any(not t.is_fulfilled for t in targets):
                pending.append({
                    "id": row["id"],
                    "user_id": row["user_id"],
                    "name": row["name"],
                    "targets": targets,
                })
        return pending

    def mark_fulfilled(
        self,
        business_id: str,
        index: int,
        cache_id: int,
        result_count: int,
        scrape_result_id: int | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Stamp one target as fulfilled.

        The whole target list is read and written back under a write lock so
        concurrent fulfillment of sibling targets cannot clobber each other.
        Returns False if the business or index is unknown, or the target was
        already fulfilled (fulfilled targets are immutable).
        """
        with self.db.transaction():
            row = self.db.fetchone("SELECT targets FROM businesses WHERE id = ?", (business_id,))
            if not row:
                return False
            targets = parse_targets(row["targets"])
            if index < 0 or index >= len(targets):
                return False
            if targets[index].is_fulfilled:
                logger.debug("Target %d of %s already fulfilled", index, business_id)
                return False
            targets[index] = targets[index].model_copy(update={
                "fulfilled_at": now or utc_now(),
                "cache_id": cache_id,
                "scrape_result_id": scrape_result_id,
                "result_count": result_count,
            })
            self.db.execute(
                "UPDATE businesses SET targets = ? WHERE id = ?",
                (dump_targets(targets), business_id),
            )
        return True

    def target_status(self, business_id: str) -> TargetStatus:
        targets = self.get_targets(business_id)
        fulfilled = sum(1 for t in targets if t.is_fulfilled)
        pending = len(targets) - fulfilled
        return TargetStatus(
            targets=targets,
            fulfilled=fulfilled,
            pending=pending,
            all_fulfilled=bool(targets) and pending == 0,
        )
