"""Embedding-based relevance scoring: cosine similarity rescaled to [0, 1]."""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Any

from outreach_research.analysis.embeddings import EmbeddingClient
from outreach_research.db.repository import ResearchRepository
from outreach_research.models import Business, ScoringOutcome

logger = logging.getLogger(__name__)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity in [-1, 1]. Zero vectors have similarity 0."""
    if len(a) != len(b):
        raise ValueError(f"Embedding dimensions differ: {len(a)} != {len(b)}")
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def relevance_score(a: list[float], b: list[float]) -> float:
    """Rescale cosine similarity from [-1, 1] to [0, 1]."""
    score = (cosine_similarity(a, b) + 1) / 2
    # Float error can push a perfect match a hair past the bounds
    return min(1.0, max(0.0, score))


def build_business_text(business: Business) -> str:
    lines = [
        business.name,
        business.description,
        f"Target audience: {business.target_audience}",
        f"Industry: {business.industry}",
        f"Keywords: {', '.join(business.keywords)}",
    ]
    return "\n".join(line.strip() for line in lines).strip()


def build_item_text(data: dict[str, Any], max_chars: int = 2000) -> str:
    """Title + body of a scraped item, truncated. Empty if the item has neither."""
    title = (data.get("title") or data.get("searchTerm") or "").strip()
    body = (data.get("body") or data.get("selftext") or "").strip()
    if not title and not body:
        return ""
    return f"{title}\n{body}".strip()[:max_chars]


class RelevanceScorer:
    """Scores unscored research results of a business against its profile."""

    def __init__(
        self,
        repo: ResearchRepository,
        embedder: EmbeddingClient,
        batch_size: int = 20,
        batch_delay: float = 0.5,
        max_chars: int = 2000,
    ):
        self.repo = repo
        self.embedder = embedder
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.max_chars = max_chars

    async def score_run(self, business_id: str, run_id: int | None = None) -> ScoringOutcome:
        """Score every null-scored result of the business (optionally one run).

        Safe to repeat: already-scored rows are not selected and the update
        only writes where the score is still null.
        """
        outcome = ScoringOutcome()
        business = self.repo.get_business(business_id)
        if business is None:
            logger.warning("Scoring skipped: business %s not found", business_id)
            return outcome

        pending = self.repo.unscored_results(business_id, run_id)
        if not pending:
            logger.info("No unscored results for business %s", business_id)
            return outcome

        business_vector = await self.embedder.embed(build_business_text(business))
        logger.info("Scoring %d results for business %s", len(pending), business_id)

        for start in range(0, len(pending), self.batch_size):
            batch = pending[start:start + self.batch_size]
            statuses = await asyncio.gather(
                *(self._score_one(result_id, data, business_vector) for result_id, data in batch)
            )
            outcome.scored += statuses.count("scored")
            outcome.failed += statuses.count("failed")
            outcome.skipped += statuses.count("skipped")

            if start + self.batch_size < len(pending):
                await asyncio.sleep(self.batch_delay)

        logger.info(
            "Scoring complete for %s: %d scored, %d failed, %d skipped",
            business_id, outcome.scored, outcome.failed, outcome.skipped,
        )
        return outcome

    async def _score_one(
        self,
        result_id: int,
        data: dict[str, Any],
        business_vector: list[float],
    ) -> str:
        text = build_item_text(data, self.max_chars)
        if not text:
            return "skipped"
        try:
            vector = await self.embedder.embed(text)
            score = relevance_score(business_vector, vector)
        except Exception as e:
            logger.warning("Failed to score result %s: %s", result_id, e)
            return "failed"
        if not self.repo.set_relevance_score(result_id, score):
            # Scored concurrently by another pass
            return "skipped"
        return "scored"


class ScoringQueue:
    """Background handoff for scoring so research runs return without waiting.

    Each submission is an asyncio task on the running loop. Its outcome (or
    exception) is logged when it finishes; it never affects the run status.
    """

    def __init__(self, scorer: RelevanceScorer):
        self.scorer = scorer
        self._tasks: set[asyncio.Task] = set()

    def submit(self, business_id: str, run_id: int | None = None) -> asyncio.Task:
        task = asyncio.create_task(
            self.scorer.score_run(business_id, run_id),
            name=f"score:{business_id}:{run_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Scoring task %s cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Scoring task %s failed: %s", task.get_name(), exc, exc_info=exc)
            return
        outcome = task.result()
        logger.info(
            "Scoring task %s: %d scored, %d failed", task.get_name(), outcome.scored, outcome.failed,
        )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for all submitted scoring tasks to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
