"""
Derived analytics over the upgrade ledger.

Every function here is a pure function of the records passed in: nothing is
persisted and the ledger is never touched. Time bucketing uses UTC.
"""

import math
from collections import Counter, defaultdict
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

from autoupdate_common.models import UpgradeRecord

DAY_ABBREVIATIONS = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]
DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]

# (label, upper bound in seconds); the last bucket is open-ended
DURATION_BUCKETS = [
    ("< 10s", 10),
    ("10-30s", 30),
    ("30s-1m", 60),
    ("1-2m", 120),
    ("2-5m", 300),
    ("> 5m", None),
]

# (grade, upper bound in seconds on the average duration)
SPEED_SCORE_TIERS = [("A+", 30), ("A", 60), ("B", 120), ("C", 300)]
SPEED_SCORE_WORST = "D"

UNKNOWN = "Unknown"
NOT_AVAILABLE = "N/A"


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _sunday_index(value: datetime) -> int:
    """Day of week with Sunday as 0."""
    return (_utc(value).weekday() + 1) % 7


def _hour_label(hour: int) -> str:
    return f"{hour:02d}:00"


def _percent(part: int, whole: int) -> int:
    return round(part / whole * 100) if whole else 0


def _durations(records: Iterable[UpgradeRecord]) -> list[int]:
    return [r.duration_ms for r in records if r.duration_ms]


def speed_score(avg_duration_seconds: float | None) -> str:
    """
    Grade an average upgrade duration.

    < 30s is "A+", < 60s "A", < 120s "B", < 300s "C", anything slower "D".
    """
    if avg_duration_seconds is None:
        return NOT_AVAILABLE
    for grade, bound in SPEED_SCORE_TIERS:
        if avg_duration_seconds < bound:
            return grade
    return SPEED_SCORE_WORST


def duration_bucket(duration_ms: int) -> str:
    seconds = duration_ms / 1000
    for label, bound in DURATION_BUCKETS:
        if bound is None or seconds < bound:
            return label
    return DURATION_BUCKETS[-1][0]


def filter_by_endpoints(
    records: Iterable[UpgradeRecord], endpoints: set[str] | frozenset[str] | None
) -> list[UpgradeRecord]:
    """
    Restrict records to a set of endpoint names.

    An empty (or None) set means no filter: every record is kept. A
    non-empty set keeps only records whose endpoint is a member.
    """
    if not endpoints:
        return list(records)
    return [r for r in records if r.source_endpoint_name in endpoints]


def upgrades_over_time(records: Sequence[UpgradeRecord]) -> list[dict[str, Any]]:
    """Per-day totals, ordered by date."""
    by_date: dict[str, dict[str, Any]] = {}
    for record in records:
        date = _utc(record.started_at).date().isoformat()
        day = by_date.setdefault(date, {"date": date, "total": 0, "success": 0, "failed": 0})
        day["total"] += 1
        day["success" if record.succeeded else "failed"] += 1
    return [by_date[date] for date in sorted(by_date)]


def _ranked_counts(names: Iterable[str]) -> list[dict[str, Any]]:
    counts = Counter(names)
    # Stable on ties: first-seen order
    return [{"name": name, "count": count} for name, count in counts.most_common()]


def aggregate(records: Sequence[UpgradeRecord]) -> dict[str, Any]:
    """
    Build every chart view from a list of ledger records.

    Returns:
        Dictionary of named views (time series, grouped counts, success
        rates, duration histogram, day/hour distributions and heatmap)
    """
    over_time = upgrades_over_time(records)

    container_counts = _ranked_counts(r.container_name or UNKNOWN for r in records)
    endpoint_counts = _ranked_counts(r.source_endpoint_name or UNKNOWN for r in records)

    durations_by_date: dict[str, list[int]] = defaultdict(list)
    for record in records:
        if record.duration_ms:
            durations_by_date[_utc(record.started_at).date().isoformat()].append(
                record.duration_ms
            )

    container_totals: dict[str, list[int]] = {}
    for record in records:
        totals = container_totals.setdefault(record.container_name or UNKNOWN, [0, 0])
        totals[0] += 1
        totals[1] += 1 if record.succeeded else 0
    success_by_container = sorted(
        (
            {"name": name, "rate": _percent(success, total), "total": total}
            for name, (total, success) in container_totals.items()
        ),
        key=lambda item: item["total"],
        reverse=True,
    )[:10]

    bucket_counts = Counter(duration_bucket(d) for d in _durations(records))

    day_counts = Counter(_sunday_index(r.started_at) for r in records)
    hour_counts = Counter(_utc(r.started_at).hour for r in records)

    cell_counts = Counter((_sunday_index(r.started_at), _utc(r.started_at).hour) for r in records)
    max_cell = max(cell_counts.values(), default=0) or 1
    heatmap = [
        {
            "day": DAY_ABBREVIATIONS[day],
            "hour": _hour_label(hour),
            "count": cell_counts[(day, hour)],
            "intensity": cell_counts[(day, hour)] / max_cell,
        }
        for day in range(7)
        for hour in range(24)
    ]

    weeks: dict[str, dict[str, Any]] = {}
    for record in records:
        started = _utc(record.started_at).date()
        week_start = started - timedelta(days=_sunday_index(record.started_at))
        key = week_start.isoformat()
        week = weeks.setdefault(key, {"week": key, "upgrades": 0, "success": 0, "failed": 0})
        week["upgrades"] += 1
        week["success" if record.succeeded else "failed"] += 1

    return {
        "upgradesOverTime": over_time,
        "containerUpgradeCounts": container_counts,
        "topContainers": container_counts[:10],
        "upgradesByEndpoint": endpoint_counts,
        "successRateOverTime": [
            {"date": day["date"], "rate": _percent(day["success"], day["total"])}
            for day in over_time
        ],
        "avgDurationOverTime": [
            {"date": date, "avgDuration": round(sum(values) / len(values) / 1000)}
            for date, values in sorted(durations_by_date.items())
        ],
        "successRateByContainer": success_by_container,
        "durationDistribution": [
            {"range": label, "count": bucket_counts[label]} for label, _ in DURATION_BUCKETS
        ],
        "upgradesByDayOfWeek": [
            {"day": DAY_ABBREVIATIONS[day], "count": day_counts[day]} for day in range(7)
        ],
        "upgradesByHour": [
            {"hour": _hour_label(hour), "count": hour_counts[hour]} for hour in range(24)
        ],
        "heatmap": heatmap,
        "weeklyComparison": [weeks[key] for key in sorted(weeks)][-8:],
    }


def calculate_stats(records: Sequence[UpgradeRecord]) -> dict[str, Any]:
    """
    Summary statistics for a list of ledger records.

    The average duration only considers records that carry a duration.
    """
    if not records:
        return {
            "totalUpgrades": 0,
            "successRate": 0,
            "avgDuration": 0,
            "uniqueContainers": 0,
            "mostUpgradedContainer": NOT_AVAILABLE,
            "mostReliableContainer": NOT_AVAILABLE,
            "busiestDay": NOT_AVAILABLE,
            "busiestHour": NOT_AVAILABLE,
            "upgradeVelocity": 0.0,
            "speedScore": NOT_AVAILABLE,
            "fastestUpgrade": NOT_AVAILABLE,
            "slowestUpgrade": NOT_AVAILABLE,
        }

    successful = sum(1 for r in records if r.succeeded)
    durations = _durations(records)
    avg_duration_ms = sum(durations) / len(durations) if durations else None

    container_totals: dict[str, list[int]] = {}
    for record in records:
        totals = container_totals.setdefault(record.container_name or UNKNOWN, [0, 0])
        totals[0] += 1
        totals[1] += 1 if record.succeeded else 0

    most_upgraded = max(container_totals.items(), key=lambda item: item[1][0])[0]

    # Most reliable: best success rate among containers with at least 3 upgrades
    reliable = [
        (success / total, total, name)
        for name, (total, success) in container_totals.items()
        if total >= 3
    ]
    most_reliable = (
        max(reliable, key=lambda item: (item[0], item[1]))[2] if reliable else NOT_AVAILABLE
    )

    day_counts = Counter(_sunday_index(r.started_at) for r in records)
    hour_counts = Counter(_utc(r.started_at).hour for r in records)
    busiest_day = max(range(7), key=lambda day: (day_counts[day], -day))
    busiest_hour = max(range(24), key=lambda hour: (hour_counts[hour], -hour))

    started = sorted(_utc(r.started_at) for r in records)
    span_days = max(1, math.ceil((started[-1] - started[0]).total_seconds() / 86400))

    return {
        "totalUpgrades": len(records),
        "successRate": _percent(successful, len(records)),
        "avgDuration": round(avg_duration_ms / 1000) if avg_duration_ms is not None else 0,
        "uniqueContainers": len(container_totals),
        "mostUpgradedContainer": most_upgraded,
        "mostReliableContainer": most_reliable,
        "busiestDay": DAY_NAMES[busiest_day],
        "busiestHour": _hour_label(busiest_hour),
        "upgradeVelocity": round(len(records) / span_days, 1),
        "speedScore": speed_score(
            avg_duration_ms / 1000 if avg_duration_ms is not None else None
        ),
        "fastestUpgrade": f"{min(durations) / 1000:.1f}s" if durations else NOT_AVAILABLE,
        "slowestUpgrade": f"{max(durations) / 1000:.1f}s" if durations else NOT_AVAILABLE,
    }
