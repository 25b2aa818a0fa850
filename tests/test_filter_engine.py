"""
Tests for the filter engine.

INVARIANTS:
- Items failing a hard filter never appear in the output
- Scores lie in [0, 1]; 1.0 when no soft filters are configured
- Ranking: score desc, then fewer soft violations, then input order
- Unknown filter kinds pass
"""

from datetime import UTC, datetime, time

import pytest

from tribepick.filtering.criteria import haversine_miles
from tribepick.filtering.engine import evaluate, get_filter_metrics
from tribepick.models.filters import (
    CategoryCriteria,
    DietaryCriteria,
    FilterConfiguration,
    FilterCriterion,
    InvalidFilterError,
    LocationCriteria,
    OpeningHoursCriteria,
    RecentActivityCriteria,
    TagsCriteria,
    configuration_from_list,
    configuration_to_list,
    validate_configuration,
)
from tribepick.models.item import BusinessHours, CandidateItem, DayHours, Location
from tribepick.services.providers import RecentActivitySnapshot

NOW = datetime(2026, 3, 6, 19, 0, tzinfo=UTC)

NYC = Location(latitude=40.7128, longitude=-74.0060)
LA = Location(latitude=34.0522, longitude=-118.2437)


def criterion(
    cid: str,
    payload: object,
    kind: str,
    is_hard: bool = False,
    priority: int = 0,
) -> FilterCriterion:
    return FilterCriterion(id=cid, kind=kind, is_hard=is_hard, priority=priority, criteria=payload)


def config(*criteria: FilterCriterion) -> FilterConfiguration:
    return FilterConfiguration(criteria=tuple(criteria))


@pytest.fixture
def items() -> list[CandidateItem]:
    return [
        CandidateItem(
            id="luigis",
            category="italian",
            tags=frozenset({"pasta", "date-night"}),
            dietary=frozenset({"vegetarian"}),
            location=NYC,
        ),
        CandidateItem(
            id="green-bowl",
            category="salads",
            tags=frozenset({"healthy"}),
            dietary=frozenset({"Vegetarian", "vegan"}),
            location=NYC,
        ),
        CandidateItem(
            id="taqueria",
            category="mexican",
            tags=frozenset({"tacos", "late-night"}),
            location=LA,
        ),
        CandidateItem(id="mystery"),
    ]


class TestHardFilters:
    def test_hard_failure_excludes_item(self, items: list[CandidateItem]) -> None:
        """Items failing a hard filter are removed."""
        cfg = config(
            criterion("veg", DietaryCriteria(required=frozenset({"vegetarian"})), "dietary", True)
        )

        result = evaluate(items, cfg, now=NOW)

        assert [v.item_id for v in result] == ["luigis", "green-bowl"]
        assert all(v.passed_hard for v in result)

    def test_dietary_match_is_case_insensitive(self, items: list[CandidateItem]) -> None:
        """'Vegetarian' on the item satisfies 'vegetarian' in the filter."""
        cfg = config(
            criterion("vegan", DietaryCriteria(required=frozenset({"VEGAN"})), "dietary", True)
        )

        result = evaluate(items, cfg, now=NOW)

        assert [v.item_id for v in result] == ["green-bowl"]

    def test_missing_category_passes(self, items: list[CandidateItem]) -> None:
        """Items with unknown category are not excluded by category filters."""
        cfg = config(
            criterion(
                "no-mex", CategoryCriteria(exclude=frozenset({"mexican"})), "category", True
            )
        )

        result = evaluate(items, cfg, now=NOW)

        assert "taqueria" not in [v.item_id for v in result]
        assert "mystery" in [v.item_id for v in result]

    def test_location_radius(self, items: list[CandidateItem]) -> None:
        """Items farther than the radius are excluded; unknown location passes."""
        cfg = config(
            criterion(
                "near", LocationCriteria(center=NYC, max_distance_miles=10.0), "location", True
            )
        )

        result = evaluate(items, cfg, now=NOW)

        assert [v.item_id for v in result] == ["luigis", "green-bowl", "mystery"]

    def test_tags_required_and_excluded(self, items: list[CandidateItem]) -> None:
        """Required tags must all be present; excluded tags must be absent."""
        cfg = config(
            criterion(
                "tags",
                TagsCriteria(required=frozenset({"pasta"}), excluded=frozenset({"late-night"})),
                "tags",
                True,
            )
        )

        result = evaluate(items, cfg, now=NOW)

        assert [v.item_id for v in result] == ["luigis"]

    def test_recent_activity_excludes_visited(self, items: list[CandidateItem]) -> None:
        """Items in the activity snapshot window are excluded."""
        snapshot = RecentActivitySnapshot()
        snapshot.add_window("alice", None, 14, {"luigis"})
        cfg = config(
            criterion(
                "fresh",
                RecentActivityCriteria(user_id="alice", days=14),
                "recent_activity",
                True,
            )
        )

        result = evaluate(items, cfg, activity=snapshot, now=NOW)

        assert "luigis" not in [v.item_id for v in result]
        assert len(result) == 3

    def test_opening_hours_filter(self) -> None:
        """Items closed at the evaluation time are excluded."""
        evening_only = BusinessHours(
            timezone="UTC", days={"friday": DayHours(open="20:00", close="23:00")}
        )
        all_day = BusinessHours(timezone="UTC", days={"friday": DayHours(open="08:00", close="23:00")})
        items = [
            CandidateItem(id="late", business_hours=evening_only),
            CandidateItem(id="open", business_hours=all_day),
        ]
        cfg = config(
            criterion(
                "hours", OpeningHoursCriteria(open_for_minutes=60), "opening_hours", True
            )
        )

        result = evaluate(items, cfg, now=NOW)

        assert [v.item_id for v in result] == ["open"]

    def test_open_until_uses_requester_clock(self) -> None:
        """open_until 22:00 at 19:00 needs three more hours."""
        items = [
            CandidateItem(
                id="closes-21",
                business_hours=BusinessHours(
                    timezone="UTC", days={"friday": DayHours(open="08:00", close="21:00")}
                ),
            ),
            CandidateItem(
                id="closes-23",
                business_hours=BusinessHours(
                    timezone="UTC", days={"friday": DayHours(open="08:00", close="23:00")}
                ),
            ),
        ]
        cfg = config(
            criterion(
                "until", OpeningHoursCriteria(open_until=time(22, 0)), "opening_hours", True
            )
        )

        result = evaluate(items, cfg, now=NOW)

        assert [v.item_id for v in result] == ["closes-23"]

    def test_unknown_kind_passes(self, items: list[CandidateItem]) -> None:
        """Unrecognized filter kinds never exclude anything."""
        cfg = config(criterion("vibes", {"mood": "cozy"}, "vibes", True))

        result = evaluate(items, cfg, now=NOW)

        assert len(result) == len(items)


class TestSoftScoring:
    def test_no_soft_filters_scores_one(self, items: list[CandidateItem]) -> None:
        """With no soft filters every survivor scores 1.0."""
        result = evaluate(items, config(), now=NOW)

        assert [v.priority_score for v in result] == [1.0] * len(items)
        assert [v.item_id for v in result] == [i.id for i in items]

    def test_weighted_score(self, items: list[CandidateItem]) -> None:
        """Priority 0 weighs 1, priority 1 weighs 0.5."""
        cfg = config(
            criterion("italian", CategoryCriteria(include=frozenset({"italian"})), "category"),
            criterion("healthy", TagsCriteria(required=frozenset({"healthy"})), "tags", priority=1),
        )

        result = {v.item_id: v for v in evaluate(items[:3], cfg, now=NOW)}

        assert result["luigis"].priority_score == pytest.approx(1 / 1.5)
        assert result["green-bowl"].priority_score == pytest.approx(0.5 / 1.5)
        assert result["taqueria"].priority_score == 0.0

    def test_soft_failures_do_not_exclude(self, items: list[CandidateItem]) -> None:
        """A soft filter nobody passes still returns every item."""
        cfg = config(criterion("never", TagsCriteria(required=frozenset({"nope"})), "tags"))

        result = evaluate(items, cfg, now=NOW)

        assert len(result) == len(items)
        assert all(v.violation_count == 1 for v in result)

    def test_ties_broken_by_violation_count(self) -> None:
        """Equal scores rank the item with fewer soft violations first."""
        items = [
            CandidateItem(id="a", tags=frozenset({"x"})),
            CandidateItem(id="b", tags=frozenset({"y", "z"})),
        ]
        cfg = config(
            criterion("x", TagsCriteria(required=frozenset({"x"})), "tags", priority=0),
            criterion("y", TagsCriteria(required=frozenset({"y"})), "tags", priority=1),
            criterion("z", TagsCriteria(required=frozenset({"z"})), "tags", priority=1),
        )

        result = evaluate(items, cfg, now=NOW)

        assert [v.priority_score for v in result] == [pytest.approx(0.5), pytest.approx(0.5)]
        assert [v.item_id for v in result] == ["b", "a"]

    def test_ties_keep_input_order(self) -> None:
        """Fully tied items keep their input order."""
        items = [CandidateItem(id=f"item-{i}") for i in range(5)]

        result = evaluate(list(reversed(items)), config(), now=NOW)

        assert [v.item_id for v in result] == [f"item-{i}" for i in reversed(range(5))]

    def test_scores_bounded(self, items: list[CandidateItem]) -> None:
        """Every score lies in [0, 1]."""
        cfg = config(
            criterion("a", CategoryCriteria(include=frozenset({"italian"})), "category", priority=3),
            criterion("b", TagsCriteria(excluded=frozenset({"tacos"})), "tags", priority=0),
            criterion("c", DietaryCriteria(required=frozenset({"vegan"})), "dietary", priority=7),
        )

        for verdict in evaluate(items, cfg, now=NOW):
            assert 0.0 <= verdict.priority_score <= 1.0


class TestMetrics:
    def test_run_recorded(self, items: list[CandidateItem]) -> None:
        """Each evaluation appends one metrics record."""
        cfg = config(
            criterion("veg", DietaryCriteria(required=frozenset({"vegetarian"})), "dietary", True),
            criterion("tags", TagsCriteria(required=frozenset({"pasta"})), "tags"),
        )

        evaluate(items, cfg, now=NOW)

        metrics = get_filter_metrics()
        assert len(metrics) == 1
        assert metrics[0].total_items == 4
        assert metrics[0].hard_filters == 1
        assert metrics[0].soft_filters == 1
        assert metrics[0].hard_excluded == 2
        assert metrics[0].survivors == 2


class TestHaversine:
    def test_same_point_is_zero(self) -> None:
        assert haversine_miles(NYC, NYC) == pytest.approx(0.0)

    def test_new_york_to_los_angeles(self) -> None:
        """Roughly 2,445 miles."""
        assert 2430 < haversine_miles(NYC, LA) < 2460


class TestValidation:
    def test_valid_configuration_passes(self) -> None:
        cfg = config(
            criterion("veg", DietaryCriteria(required=frozenset({"vegan"})), "dietary", True),
            criterion("hours", OpeningHoursCriteria(open_for_minutes=0), "opening_hours"),
            criterion("vibes", {"mood": "cozy"}, "vibes"),
        )

        validate_configuration(cfg)

    def test_duplicate_ids_rejected(self) -> None:
        cfg = config(
            criterion("dup", DietaryCriteria(required=frozenset({"vegan"})), "dietary"),
            criterion("dup", TagsCriteria(required=frozenset({"x"})), "tags"),
        )

        with pytest.raises(InvalidFilterError, match="duplicate"):
            validate_configuration(cfg)

    def test_negative_priority_rejected(self) -> None:
        cfg = config(
            criterion("neg", TagsCriteria(required=frozenset({"x"})), "tags", priority=-1)
        )

        with pytest.raises(InvalidFilterError):
            validate_configuration(cfg)

    def test_payload_must_match_kind(self) -> None:
        cfg = config(criterion("mismatch", TagsCriteria(required=frozenset({"x"})), "dietary"))

        with pytest.raises(InvalidFilterError, match="does not match"):
            validate_configuration(cfg)

    @pytest.mark.parametrize(
        ("payload", "kind"),
        [
            (CategoryCriteria(), "category"),
            (DietaryCriteria(), "dietary"),
            (LocationCriteria(center=NYC, max_distance_miles=0), "location"),
            (LocationCriteria(center=Location(95.0, 0.0), max_distance_miles=5), "location"),
            (RecentActivityCriteria(user_id="", days=7), "recent_activity"),
            (RecentActivityCriteria(user_id="alice", days=0), "recent_activity"),
            (OpeningHoursCriteria(), "opening_hours"),
            (
                OpeningHoursCriteria(open_for_minutes=30, open_until=time(22, 0)),
                "opening_hours",
            ),
            (OpeningHoursCriteria(open_for_minutes=-5), "opening_hours"),
            (
                OpeningHoursCriteria(open_for_minutes=30, requester_timezone="Nowhere/City"),
                "opening_hours",
            ),
            (OpeningHoursCriteria(open_for_minutes="abc"), "opening_hours"),
            (TagsCriteria(), "tags"),
        ],
    )
    def test_inconsistent_payloads_rejected(self, payload: object, kind: str) -> None:
        """Each kind rejects payloads that cannot be evaluated meaningfully."""
        with pytest.raises(InvalidFilterError):
            validate_configuration(config(criterion("bad", payload, kind)))


class TestSerialization:
    def test_configuration_survives_persistence_format(self) -> None:
        """A configuration written for storage reads back equal."""
        cfg = config(
            criterion("cat", CategoryCriteria(include=frozenset({"thai", "indian"})), "category"),
            criterion("near", LocationCriteria(center=NYC, max_distance_miles=3.5), "location", True),
            criterion(
                "hours",
                OpeningHoursCriteria(
                    requester_timezone="America/New_York",
                    open_until=time(23, 30),
                    reference_time=NOW,
                ),
                "opening_hours",
                priority=2,
            ),
            criterion("fresh", RecentActivityCriteria(user_id="u", days=7, tribe_id="t"), "recent_activity"),
            criterion("vibes", {"mood": "cozy"}, "vibes"),
        )

        assert configuration_from_list(configuration_to_list(cfg)) == cfg

    @pytest.mark.parametrize(
        ("kind", "payload"),
        [
            ("opening_hours", {"open_for_minutes": "abc"}),
            ("opening_hours", {"open_for_minutes": True}),
            ("dietary", {"required": "vegan"}),
            ("tags", {"excluded": ["loud", 3]}),
            ("category", {"include": {"thai": 1}}),
        ],
    )
    def test_mistyped_fields_rejected_on_read(self, kind: str, payload: dict) -> None:
        """A bare string is never split into single-letter requirements."""
        with pytest.raises(InvalidFilterError, match="must be"):
            configuration_from_list([{"id": "typed", "kind": kind, "criteria": payload}])
