"""
Unit tests for memory date clustering.
"""

import random
from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest
from sqlalchemy.orm import Session

from memorygrove.catalog.models import Image, Memory
from memorygrove.media.clusterer import (
    ClusteringError,
    MemoryDateClusterer,
    compute_date_range,
)


def day(n: float) -> datetime:
    return datetime(2024, 6, 1) + timedelta(days=n)


class TestComputeDateRange:
    """Tests for the pure range computation."""

    def test_empty_input_returns_none(self):
        assert compute_date_range([]) is None

    def test_single_member_spans_one_day(self):
        result = compute_date_range([("a", day(0))])

        assert result.start_date == day(0)
        assert result.end_date == day(1)
        assert result.corrections == {}

    def test_tight_cluster_has_no_outliers(self):
        members = [("a", day(0)), ("b", day(2)), ("c", day(4))]

        result = compute_date_range(members)

        assert result.start_date == day(0)
        assert result.end_date == day(4)
        assert result.corrections == {}
        assert result.valid_count == 3

    def test_gap_at_threshold_does_not_split(self):
        members = [("a", day(0)), ("b", day(5))]

        result = compute_date_range(members)

        assert result.corrections == {}
        assert result.end_date == day(5)

    def test_late_outlier_is_moved_into_range(self):
        members = [("a", day(0)), ("b", day(1)), ("c", day(2)), ("late", day(30))]

        result = compute_date_range(members, rng=random.Random(7))

        assert result.start_date == day(0)
        assert result.end_date == day(2)
        assert set(result.corrections) == {"late"}
        assert day(0) <= result.corrections["late"] <= day(2)

    def test_larger_right_side_wins(self):
        members = [("early", day(0)), ("a", day(40)), ("b", day(41))]

        result = compute_date_range(members, rng=random.Random(1))

        assert result.start_date == day(40)
        assert result.end_date == day(41)
        assert set(result.corrections) == {"early"}

    def test_tie_keeps_earlier_side(self):
        members = [("a", day(0)), ("b", day(1)), ("c", day(20)), ("d", day(21))]

        result = compute_date_range(members, rng=random.Random(3))

        assert result.start_date == day(0)
        assert result.end_date == day(1)
        assert set(result.corrections) == {"c", "d"}

    def test_first_largest_gap_is_used_on_equal_gaps(self):
        members = [("a", day(0)), ("b", day(10)), ("c", day(20))]

        result = compute_date_range(members, rng=random.Random(3))

        # Split after "a": right side (b, c) is larger
        assert result.start_date == day(10)
        assert result.end_date == day(20)
        assert set(result.corrections) == {"a"}

    def test_duration_is_clamped(self):
        members = [(str(i), day(i * 4)) for i in range(10)]  # 36 days, gaps of 4

        result = compute_date_range(members)

        assert result.start_date == day(0)
        assert result.end_date == day(20)
        assert result.corrections == {}

    def test_outliers_drawn_after_clamp(self):
        members = [(str(i), day(i * 4)) for i in range(10)] + [("late", day(100))]

        result = compute_date_range(members, rng=random.Random(11))

        assert result.end_date - result.start_date == timedelta(days=20)
        assert result.start_date <= result.corrections["late"] <= result.end_date

    def test_outlier_draw_may_land_on_range_start(self):
        members = [("a", day(0)), ("b", day(1)), ("late", day(30))]
        rng = Mock(spec=random.Random)
        rng.random.return_value = 0.0

        result = compute_date_range(members, rng=rng)

        assert result.corrections == {"late": day(0)}

    def test_same_seed_gives_same_corrections(self):
        members = [("a", day(0)), ("b", day(1)), ("late", day(30))]

        first = compute_date_range(members, rng=random.Random(42))
        second = compute_date_range(members, rng=random.Random(42))

        assert first.corrections == second.corrections

    def test_unsorted_input(self):
        members = [("c", day(3)), ("a", day(0)), ("b", day(1))]

        result = compute_date_range(members)

        assert result.start_date == day(0)
        assert result.end_date == day(3)

    def test_custom_thresholds(self):
        members = [("a", day(0)), ("b", day(1)), ("c", day(3))]

        result = compute_date_range(
            members,
            gap_threshold=timedelta(days=1),
            max_duration=timedelta(hours=12),
            rng=random.Random(5),
        )

        assert result.start_date == day(0)
        assert result.end_date == day(0.5)
        assert set(result.corrections) == {"c"}


def _add_image(session, memory_id, taken_at):
    image = Image(
        original_path="media/x/original.jpg",
        webp_path="media/x/image.webp",
        thumb_big_path="media/x/thumb_big.webp",
        thumb_small_path="media/x/thumb_small.webp",
        type="landscape",
        memory_id=memory_id,
        context_id=1,
        created_by_user_id=1,
        taken_at=taken_at,
        original_taken_at=taken_at,
    )
    session.add(image)
    session.flush()
    return image


class TestMemoryDateClusterer:
    """Tests for the database-backed clusterer."""

    def test_missing_memory_raises(self, db_session):
        with pytest.raises(ClusteringError):
            MemoryDateClusterer(db_session).update_memory_dates(999)

    def test_memory_row_is_locked_for_update(self):
        session = Mock(spec=Session)
        session.get.return_value = None

        with pytest.raises(ClusteringError):
            MemoryDateClusterer(session).update_memory_dates(5)

        session.get.assert_called_once_with(Memory, 5, with_for_update=True)

    def test_updates_memory_range(self, db_session, memory_factory):
        memory_id = memory_factory()
        _add_image(db_session, memory_id, day(0))
        _add_image(db_session, memory_id, day(3))

        result = MemoryDateClusterer(db_session).update_memory_dates(memory_id)

        memory = db_session.get(Memory, memory_id)
        assert result is not None
        assert memory.start_date == day(0)
        assert memory.end_date == day(3)

    def test_rewrites_outlier_but_keeps_original(self, db_session, memory_factory):
        memory_id = memory_factory()
        _add_image(db_session, memory_id, day(0))
        _add_image(db_session, memory_id, day(2))
        outlier = _add_image(db_session, memory_id, day(60))

        MemoryDateClusterer(db_session, rng=random.Random(9)).update_memory_dates(memory_id)

        db_session.refresh(outlier)
        assert day(0) <= outlier.taken_at <= day(2)
        assert outlier.original_taken_at == day(60)

    def test_empty_memory_is_left_unchanged(self, db_session, memory_factory):
        memory_id = memory_factory()

        result = MemoryDateClusterer(db_session).update_memory_dates(memory_id)

        assert result is None
        assert db_session.get(Memory, memory_id).start_date is None
