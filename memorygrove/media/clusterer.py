"""Temporal clustering of memory members into a date range."""

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Hashable, List, Optional, Sequence, Tuple

import numpy as np
from sqlalchemy.orm import Session

from memorygrove.catalog.models import Image, Memory
from memorygrove.common.metrics import outlier_dates_reassigned_total

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)
DEFAULT_GAP_THRESHOLD = timedelta(days=5)
DEFAULT_MAX_DURATION = timedelta(days=20)


class ClusteringError(Exception):
    pass


@dataclass
class DateRangeResult:
    """Derived range for a memory plus replacement dates for outliers."""
    start_date: datetime
    end_date: datetime
    corrections: Dict[Hashable, datetime] = field(default_factory=dict)
    valid_count: int = 0


def compute_date_range(
    members: Sequence[Tuple[Hashable, datetime]],
    gap_threshold: timedelta = DEFAULT_GAP_THRESHOLD,
    max_duration: timedelta = DEFAULT_MAX_DURATION,
    rng: Optional[random.Random] = None,
) -> Optional[DateRangeResult]:
    """
    Derive a memory's date range from its members' capture times.

    The sorted timestamps are split at the largest consecutive gap when it
    exceeds ``gap_threshold``; the larger side (the earlier side on a tie)
    defines the range and every member of the other side is an outlier
    that gets a new timestamp drawn uniformly inside the final range. The
    range is then clamped to ``max_duration``.

    A single member yields ``[t, t + 1 day]``. An empty input yields None.
    """
    if not members:
        return None

    rng = rng or random.Random()
    ordered = sorted(members, key=lambda member: member[1])

    if len(ordered) == 1:
        taken_at = ordered[0][1]
        return DateRangeResult(taken_at, taken_at + ONE_DAY, {}, 1)

    first = ordered[0][1]
    offsets = np.array(
        [(taken_at - first).total_seconds() for _, taken_at in ordered],
        dtype=np.float64,
    )
    gaps = np.diff(offsets)
    # argmax returns the first index on ties
    max_gap_index = int(np.argmax(gaps))
    max_gap = float(gaps[max_gap_index])

    outliers: List[Tuple[Hashable, datetime]] = []
    if max_gap > gap_threshold.total_seconds():
        left_size = max_gap_index + 1
        right_size = len(ordered) - left_size
        if left_size >= right_size:
            valid, outliers = ordered[:left_size], ordered[left_size:]
        else:
            valid, outliers = ordered[left_size:], ordered[:left_size]
        logger.debug(
            f"Split at gap of {max_gap / 86400:.1f} days: "
            f"{len(valid)} valid, {len(outliers)} outliers"
        )
    else:
        valid = ordered

    start_date = valid[0][1]
    end_date = valid[-1][1]
    if end_date - start_date > max_duration:
        end_date = start_date + max_duration

    span = end_date - start_date
    corrections = {
        member_id: start_date + span * rng.random()
        for member_id, _ in outliers
    }

    return DateRangeResult(start_date, end_date, corrections, len(valid))


class MemoryDateClusterer:
    """Recomputes and stores a memory's date range from its images."""

    def __init__(
        self,
        db: Session,
        gap_threshold: timedelta = DEFAULT_GAP_THRESHOLD,
        max_duration: timedelta = DEFAULT_MAX_DURATION,
        rng: Optional[random.Random] = None,
    ):
        self.db = db
        self.gap_threshold = gap_threshold
        self.max_duration = max_duration
        self.rng = rng or random.Random()

    def update_memory_dates(self, memory_id: int) -> Optional[DateRangeResult]:
        """
        Recompute a memory's range and rewrite outlier capture dates.

        Changes are flushed but not committed; the caller owns the
        transaction.

        Raises:
            ClusteringError: If the memory does not exist
        """
        # Row lock serializes concurrent jobs for the same memory
        memory = self.db.get(Memory, memory_id, with_for_update=True)
        if memory is None:
            raise ClusteringError(f"Memory {memory_id} not found")

        rows = (
            self.db.query(Image.id, Image.taken_at)
            .filter(Image.memory_id == memory_id, Image.taken_at.isnot(None))
            .order_by(Image.taken_at.asc(), Image.id.asc())
            .all()
        )
        result = compute_date_range(
            [(row.id, row.taken_at) for row in rows],
            gap_threshold=self.gap_threshold,
            max_duration=self.max_duration,
            rng=self.rng,
        )
        if result is None:
            logger.info(f"Memory {memory_id} has no dated images, range unchanged")
            return None

        memory.start_date = result.start_date
        memory.end_date = result.end_date

        for image_id, new_taken_at in result.corrections.items():
            image = self.db.get(Image, image_id)
            logger.info(
                f"Reassigning outlier image {image_id} in memory {memory_id}: "
                f"{image.taken_at.isoformat()} -> {new_taken_at.isoformat()}"
            )
            image.taken_at = new_taken_at

        self.db.flush()
        if result.corrections:
            outlier_dates_reassigned_total.inc(len(result.corrections))

        logger.info(
            f"Updated memory {memory_id} range to "
            f"{result.start_date.isoformat()} - {result.end_date.isoformat()} "
            f"({len(rows)} images, {len(result.corrections)} outliers)"
        )
        return result
