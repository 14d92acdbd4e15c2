from datetime import datetime, timedelta, timezone

import pytest

from services.resolver import (
    InvalidQueryTime,
    SearchExhausted,
    SnapshotNotFoundYet,
    SnapshotResolver,
    normalize_search_limit,
    parse_query_time,
)
from services.snapshot_store import SnapshotStore


def _ts(value: str) -> datetime:
    return parse_query_time(value)


@pytest.fixture
def resolver(store: SnapshotStore) -> SnapshotResolver:
    store.write("2024010100", b'{"cycle": "00"}')
    store.write("2024010112", b'{"cycle": "12"}')
    return SnapshotResolver(store, cadence_hours=6, latest_lookback=timedelta(days=3))


def test_nearest_prefers_the_snapshot_behind_the_target(resolver: SnapshotResolver):
    resolved = resolver.nearest(_ts("2024-01-01T03:00Z"), 1)
    assert resolved.key == "2024010100"
    assert resolved.offset_hours == pytest.approx(-3.0)


def test_nearest_returns_the_bucket_of_the_target(resolver: SnapshotResolver):
    resolved = resolver.nearest(_ts("2024-01-01T15:00Z"), 1)
    assert resolved.key == "2024010112"
    assert resolved.path.read_bytes() == b'{"cycle": "12"}'


def test_nearest_fails_when_nothing_is_in_range(resolver: SnapshotResolver):
    with pytest.raises(SearchExhausted):
        resolver.nearest(_ts("2023-01-01T00:00Z"), 1)


def test_nearest_searches_forward_after_backward_is_exhausted(resolver: SnapshotResolver):
    resolved = resolver.nearest(_ts("2023-12-31T20:00Z"), 1)
    assert resolved.key == "2024010100"


def test_backward_first_prefers_older_data_over_a_closer_newer_snapshot(resolver: SnapshotResolver):
    # 2024010112 is 2h ahead, 2024010100 is 10h behind
    target = _ts("2024-01-01T10:00Z")
    assert resolver.nearest(target, 1).key == "2024010100"
    assert resolver.nearest(target, 1, strategy="closest").key == "2024010112"


def test_closest_breaks_ties_toward_older_snapshot(store: SnapshotStore):
    store.write("2024010100", b"{}")
    store.write("2024010106", b"{}")
    resolver = SnapshotResolver(store, cadence_hours=6)

    assert resolver.nearest(_ts("2024-01-01T03:00Z"), 1, strategy="closest").key == "2024010100"


def test_search_window_stays_strictly_inside_the_limit(resolver: SnapshotResolver):
    keys = [i.key for i in resolver.candidates(_ts("2024-01-02T00:00Z"), 1)]
    assert keys == [
        "2024010200",
        "2024010118",
        "2024010112",
        "2024010106",
        "2024010206",
        "2024010212",
        "2024010218",
    ]
    # 2024010100 sits exactly one day back and is outside the window
    assert resolver.nearest(_ts("2024-01-02T00:00Z"), 1).key == "2024010112"
    assert resolver.nearest(_ts("2024-01-02T06:00Z"), 2).key == "2024010112"


def test_closest_orders_window_by_distance(resolver: SnapshotResolver):
    keys = [i.key for i in resolver.candidates(_ts("2024-01-01T07:00Z"), 1, strategy="closest")]
    assert keys[:4] == ["2024010106", "2024010112", "2024010100", "2024010118"]
    assert len(keys) == 7


def test_nearest_rejects_unknown_strategy(resolver: SnapshotResolver):
    with pytest.raises(ValueError):
        resolver.nearest(_ts("2024-01-01T00:00Z"), 1, strategy="sideways")  # type: ignore[arg-type]


def test_latest_falls_back_to_previous_buckets(resolver: SnapshotResolver):
    resolved = resolver.latest(now=_ts("2024-01-02T09:15Z"))
    assert resolved.key == "2024010112"


def test_latest_returns_current_bucket_when_present(resolver: SnapshotResolver):
    assert resolver.latest(now=_ts("2024-01-01T12:00Z")).key == "2024010112"


def test_latest_gives_up_outside_lookback(resolver: SnapshotResolver):
    with pytest.raises(SnapshotNotFoundYet):
        resolver.latest(now=_ts("2024-01-05T00:00Z"))


def test_latest_on_empty_store(store: SnapshotStore):
    resolver = SnapshotResolver(store, cadence_hours=6, latest_lookback=timedelta(days=1))
    with pytest.raises(SnapshotNotFoundYet):
        resolver.latest(now=datetime(2024, 1, 1, tzinfo=timezone.utc))


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("2024-01-01T03:00Z", datetime(2024, 1, 1, 3, tzinfo=timezone.utc)),
        ("2024-01-01T03:00:00+02:00", datetime(2024, 1, 1, 1, tzinfo=timezone.utc)),
        ("2024-01-01T03:00:00", datetime(2024, 1, 1, 3, tzinfo=timezone.utc)),
        ("2024-01-01", datetime(2024, 1, 1, tzinfo=timezone.utc)),
    ],
)
def test_parse_query_time_accepts_iso_variants(value, expected):
    assert parse_query_time(value) == expected


@pytest.mark.parametrize("value", [None, "", "   ", "yesterday", "2024-13-01T00:00Z", 12])
def test_parse_query_time_rejects_invalid_input(value):
    with pytest.raises(InvalidQueryTime):
        parse_query_time(value)


@pytest.mark.parametrize(
    ("value", "expected"),
    [(None, 1), ("", 1), ("abc", 1), ("0", 1), (-3, 1), ("2", 2), (7, 7), ("500", 30)],
)
def test_normalize_search_limit(value, expected):
    assert normalize_search_limit(value, default=1, maximum=30) == expected


def test_window_is_truncated_at_the_start_of_the_calendar(store: SnapshotStore):
    resolver = SnapshotResolver(store, cadence_hours=6)
    keys = [i.key for i in resolver.candidates(_ts("0001-01-01T00:00Z"), 1)]
    assert keys == ["0001010100", "0001010106", "0001010112", "0001010118"]

    with pytest.raises(SearchExhausted):
        resolver.nearest(_ts("0001-01-01T00:00Z"), 1)

    store.write("0001010106", b"{}")
    assert resolver.nearest(_ts("0001-01-01T00:00Z"), 1, strategy="closest").key == "0001010106"


def test_window_is_truncated_at_the_end_of_the_calendar(store: SnapshotStore):
    resolver = SnapshotResolver(store, cadence_hours=6)
    keys = [i.key for i in resolver.candidates(_ts("9999-12-31T23:00Z"), 1)]
    assert keys == ["9999123118", "9999123112", "9999123106", "9999123100"]

    with pytest.raises(SearchExhausted):
        resolver.nearest(_ts("9999-12-31T23:00Z"), 30, strategy="closest")


@pytest.mark.parametrize("value", ["0001-01-01T00:30:00+01:00", "9999-12-31T23:30:00-01:00"])
def test_parse_query_time_rejects_instants_outside_utc_range(value):
    with pytest.raises(InvalidQueryTime):
        parse_query_time(value)


def test_forward_phase_starts_one_cadence_after_the_target_interval(resolver: SnapshotResolver):
    resolved = resolver.nearest(_ts("2023-12-31T20:00Z"), 1)
    assert resolved.key == "2024010100"
    assert resolved.offset_hours == pytest.approx(4.0)
