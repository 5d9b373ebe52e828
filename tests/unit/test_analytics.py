"""
Unit tests for the analytics aggregator.
"""

from datetime import UTC, datetime, timedelta

import pytest

from autoupdate_common.models import UpgradeRecord
from autoupdate_engine.analytics import (
    aggregate,
    calculate_stats,
    duration_bucket,
    filter_by_endpoints,
    speed_score,
)


def make_record(
    id: str,
    started_at: datetime,
    duration_ms: int | None = 10000,
    status: str = "success",
    container_name: str = "web",
    endpoint: str | None = "local",
) -> UpgradeRecord:
    ended_at = started_at + timedelta(milliseconds=duration_ms) if duration_ms else None
    return UpgradeRecord(
        id=id,
        container_id=f"id-{container_name}",
        container_name=container_name,
        status=status,
        started_at=started_at,
        ended_at=ended_at,
        source_endpoint_name=endpoint,
    )


# Monday 2024-01-15
MONDAY = datetime(2024, 1, 15, 9, 30, tzinfo=UTC)


@pytest.fixture
def three_records():
    return [
        make_record("r1", MONDAY, 10000, "success"),
        make_record("r2", MONDAY + timedelta(hours=1), 20000, "success"),
        make_record("r3", MONDAY + timedelta(days=1), 90000, "failed", container_name="db"),
    ]


class TestCalculateStats:
    def test_three_record_scenario(self, three_records):
        stats = calculate_stats(three_records)

        assert stats["totalUpgrades"] == 3
        assert stats["successRate"] == 67
        assert stats["avgDuration"] == 40
        assert stats["uniqueContainers"] == 2
        assert stats["mostUpgradedContainer"] == "web"
        assert stats["speedScore"] == "A"
        assert stats["fastestUpgrade"] == "10.0s"
        assert stats["slowestUpgrade"] == "90.0s"

    def test_average_ignores_missing_durations(self):
        records = [
            make_record("r1", MONDAY, 10000),
            make_record("r2", MONDAY, None, "failed"),
            make_record("r3", MONDAY, 30000),
        ]

        stats = calculate_stats(records)

        assert stats["avgDuration"] == 20
        assert stats["totalUpgrades"] == 3

    def test_no_durations(self):
        stats = calculate_stats([make_record("r1", MONDAY, None)])

        assert stats["avgDuration"] == 0
        assert stats["speedScore"] == "N/A"
        assert stats["fastestUpgrade"] == "N/A"

    def test_empty(self):
        stats = calculate_stats([])

        assert stats["totalUpgrades"] == 0
        assert stats["successRate"] == 0
        assert stats["mostUpgradedContainer"] == "N/A"
        assert stats["busiestDay"] == "N/A"
        assert stats["upgradeVelocity"] == 0.0

    def test_busiest_day_and_hour(self, three_records):
        stats = calculate_stats(three_records)

        assert stats["busiestDay"] == "Monday"
        assert stats["busiestHour"] == "09:00"

    def test_most_reliable_needs_three_upgrades(self):
        records = [make_record(f"a{i}", MONDAY, container_name="steady") for i in range(3)]
        records += [make_record(f"b{i}", MONDAY, container_name="flaky") for i in range(2)]
        records.append(make_record("b3", MONDAY, status="failed", container_name="flaky"))
        records += [make_record(f"c{i}", MONDAY, container_name="rare") for i in range(2)]

        assert calculate_stats(records)["mostReliableContainer"] == "steady"
        assert calculate_stats(records[3:])["mostReliableContainer"] == "flaky"
        assert calculate_stats(records[-2:])["mostReliableContainer"] == "N/A"

    def test_upgrade_velocity(self):
        records = [make_record(f"r{i}", MONDAY + timedelta(days=i)) for i in range(5)]

        # Four-day span, five upgrades
        assert calculate_stats(records)["upgradeVelocity"] == 1.2

    def test_velocity_span_is_at_least_one_day(self):
        records = [make_record("r1", MONDAY), make_record("r2", MONDAY + timedelta(hours=2))]

        assert calculate_stats(records)["upgradeVelocity"] == 2.0


class TestSpeedScore:
    @pytest.mark.parametrize(
        "seconds, grade",
        [(None, "N/A"), (5, "A+"), (29.9, "A+"), (30, "A"), (90, "B"), (200, "C"), (300, "D")],
    )
    def test_tiers(self, seconds, grade):
        assert speed_score(seconds) == grade


class TestAggregate:
    def test_duration_buckets(self):
        assert duration_bucket(9999) == "< 10s"
        assert duration_bucket(10000) == "10-30s"
        assert duration_bucket(45000) == "30s-1m"
        assert duration_bucket(90000) == "1-2m"
        assert duration_bucket(299000) == "2-5m"
        assert duration_bucket(300000) == "> 5m"

    def test_chart_views(self, three_records):
        charts = aggregate(three_records)

        assert charts["upgradesOverTime"] == [
            {"date": "2024-01-15", "total": 2, "success": 2, "failed": 0},
            {"date": "2024-01-16", "total": 1, "success": 0, "failed": 1},
        ]
        assert charts["successRateOverTime"] == [
            {"date": "2024-01-15", "rate": 100},
            {"date": "2024-01-16", "rate": 0},
        ]
        assert charts["avgDurationOverTime"] == [
            {"date": "2024-01-15", "avgDuration": 15},
            {"date": "2024-01-16", "avgDuration": 90},
        ]
        assert charts["containerUpgradeCounts"] == [
            {"name": "web", "count": 2},
            {"name": "db", "count": 1},
        ]
        assert charts["upgradesByEndpoint"] == [{"name": "local", "count": 3}]
        assert {"range": "1-2m", "count": 1} in charts["durationDistribution"]
        assert len(charts["durationDistribution"]) == 6

    def test_day_and_hour_distributions(self, three_records):
        charts = aggregate(three_records)

        by_day = {d["day"]: d["count"] for d in charts["upgradesByDayOfWeek"]}
        assert list(by_day) == ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]
        assert by_day["Mon"] == 2
        assert by_day["Tue"] == 1

        by_hour = {h["hour"]: h["count"] for h in charts["upgradesByHour"]}
        assert len(by_hour) == 24
        assert by_hour["09:00"] == 2
        assert by_hour["10:00"] == 1

    def test_heatmap_intensity(self, three_records):
        heatmap = aggregate(three_records)["heatmap"]

        assert len(heatmap) == 7 * 24
        cell = next(c for c in heatmap if c["day"] == "Mon" and c["hour"] == "09:00")
        assert cell["count"] == 1
        assert cell["intensity"] == 1.0
        assert all(0 <= c["intensity"] <= 1 for c in heatmap)

    def test_weekly_comparison_keeps_last_eight_weeks(self):
        records = [make_record(f"r{i}", MONDAY + timedelta(weeks=i)) for i in range(10)]

        weeks = aggregate(records)["weeklyComparison"]

        assert len(weeks) == 8
        # Weeks start on Sunday
        assert weeks[0]["week"] == "2024-01-28"
        assert all(w["upgrades"] == 1 for w in weeks)

    def test_empty(self):
        charts = aggregate([])

        assert charts["upgradesOverTime"] == []
        assert all(c["intensity"] == 0 for c in charts["heatmap"])
        assert charts["weeklyComparison"] == []


class TestFilterByEndpoints:
    def test_empty_set_means_all(self, three_records):
        assert filter_by_endpoints(three_records, set()) == three_records
        assert filter_by_endpoints(three_records, None) == three_records

    def test_non_empty_set_restricts(self):
        records = [
            make_record("r1", MONDAY, endpoint="nas"),
            make_record("r2", MONDAY, endpoint="local"),
            make_record("r3", MONDAY, endpoint=None),
        ]

        assert [r.id for r in filter_by_endpoints(records, {"nas"})] == ["r1"]
        assert filter_by_endpoints(records, {"unknown"}) == []
