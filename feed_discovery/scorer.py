from __future__ import annotations

import logging

from .config import (
    CROSS_SOURCE_BONUS,
    SCORE_UPDATE_ATTEMPTS,
    STATUS_PENDING,
    STATUS_SUGGESTED,
    SUGGESTION_THRESHOLD,
)
from .errors import ScoreConflictError
from .models import CollectedStory, ScoreUpdate
from .storage import Storage
from .utils import utc_now_iso

log = logging.getLogger(__name__)


def calculate_cycle_score(stories: list[CollectedStory]) -> int:
    score = sum(story.points for story in stories)
    if len({story.source for story in stories}) >= 2:
        score += CROSS_SOURCE_BONUS
    return score


async def update_domain_score(
    storage: Storage,
    domain_id: int,
    cycle_score: int,
    current_status: str,
) -> ScoreUpdate:
    """Add ``cycle_score`` to the stored score and promote pending domains past the threshold.

    The write is conditional on the score that was read, so an overlapping
    update forces a re-read instead of silently dropping points.
    """
    for attempt in range(1, SCORE_UPDATE_ATTEMPTS + 1):
        result = await storage.execute("SELECT current_score FROM discovered_domains WHERE id = ?", (domain_id,))
        row = result.first()
        if row is None:
            raise LookupError(f"Unknown domain id {domain_id}")
        current_score = row["current_score"] or 0
        new_score = current_score + cycle_score
        promoted = new_score >= SUGGESTION_THRESHOLD and current_status == STATUS_PENDING

        if promoted:
            update = await storage.execute(
                """UPDATE discovered_domains
                   SET current_score = ?, status = ?, last_seen = ?
                   WHERE id = ? AND current_score = ?""",
                (new_score, STATUS_SUGGESTED, utc_now_iso(), domain_id, current_score),
            )
        else:
            update = await storage.execute(
                """UPDATE discovered_domains
                   SET current_score = ?, last_seen = ?
                   WHERE id = ? AND current_score = ?""",
                (new_score, utc_now_iso(), domain_id, current_score),
            )
        if update.rows_affected:
            if promoted:
                log.info("Domain %s promoted to suggested with score %d.", domain_id, new_score)
            return ScoreUpdate(new_score=new_score, promoted=promoted)
        log.debug("Score for domain %s moved underneath us (attempt %d).", domain_id, attempt)

    raise ScoreConflictError(domain_id, SCORE_UPDATE_ATTEMPTS)
