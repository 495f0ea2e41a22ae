from datetime import UTC, datetime, timedelta

import pytest

from url_monitor.database import Database
from url_monitor.errors import StorageError
from url_monitor.models import CheckResult


def _result(minutes_ago=0, now=None, **overrides):
    now = now or datetime.now(UTC)
    fields = {
        "url": "https://example.com",
        "name": "test-site",
        "timestamp": now - timedelta(minutes=minutes_ago),
        "status_code": 200,
        "response_time_ms": 100,
        "success": True,
    }
    fields.update(overrides)
    return CheckResult(**fields)


async def test_insert_and_query_round_trip(db):
    original = _result(
        minutes_ago=5,
        country_code="GB",
        group="News",
        status_code=503,
        response_time_ms=1234,
        success=False,
        error_message="HTTP 503",
    )
    row_id = await db.insert_result(original)

    results = await db.query_results(timedelta(hours=1))

    assert len(results) == 1
    assert results[0].id == row_id
    assert results[0].model_dump(exclude={"id"}) == original.model_dump(exclude={"id"})


async def test_query_results_newest_first_and_in_range(db):
    await db.insert_result(_result(minutes_ago=30, name="middle"))
    await db.insert_result(_result(minutes_ago=10, name="newest"))
    await db.insert_result(_result(minutes_ago=50, name="oldest"))
    await db.insert_result(_result(minutes_ago=60 * 48, name="out-of-range"))

    results = await db.query_results(timedelta(hours=1))

    assert [r.name for r in results] == ["newest", "middle", "oldest"]


async def test_query_results_filters(db):
    await db.insert_result(_result(name="a", group="News"))
    await db.insert_result(_result(name="b", group="News"))
    await db.insert_result(_result(name="c", group="Shops"))
    await db.insert_result(_result(name="d"))

    news = await db.query_results(timedelta(hours=1), group="News")
    assert sorted(r.name for r in news) == ["a", "b"]

    only_b = await db.query_results(timedelta(hours=1), group="News", name="b")
    assert [r.name for r in only_b] == ["b"]

    ungrouped = await db.query_results(timedelta(hours=1), group="Ungrouped")
    assert [r.name for r in ungrouped] == ["d"]


async def test_query_stats_aggregates(db):
    times = [100, 200, 300, 400, 500, 150, 250, 351, 450, 550]
    for i, ms in enumerate(times):
        await db.insert_result(
            _result(
                minutes_ago=i,
                response_time_ms=ms,
                success=i >= 3,
                status_code=200 if i >= 3 else 500,
                error_message=None if i >= 3 else "HTTP 500",
            )
        )

    stats = await db.query_stats(timedelta(hours=24))

    assert len(stats) == 1
    s = stats[0]
    assert s.total_requests == 10
    assert s.successful_requests == 7
    assert s.failed_requests == 3
    assert s.success_rate == 70.0
    assert s.average_response_time == round(sum(times) / len(times))
    # newest row is minutes_ago=0, a failure
    assert s.last_status == 500
    assert s.last_checked is not None


async def test_query_stats_rounds_half_up(db):
    await db.insert_result(_result(response_time_ms=100))
    await db.insert_result(_result(response_time_ms=101))

    stats = await db.query_stats(timedelta(hours=1))

    assert stats[0].average_response_time == 101


async def test_query_stats_groups_by_target(db):
    await db.insert_result(_result(name="a", url="https://a.example", country_code="US"))
    await db.insert_result(_result(name="a", url="https://a.example", country_code="DE"))
    await db.insert_result(_result(name="b", url="https://b.example"))

    stats = await db.query_stats(timedelta(hours=1))

    assert len(stats) == 3
    assert {(s.name, s.country_code) for s in stats} == {("a", "US"), ("a", "DE"), ("b", None)}


async def test_query_stats_empty(db):
    assert await db.query_stats(timedelta(hours=1)) == []


async def test_group_hierarchy_uses_sentinels(db):
    await db.insert_result(_result(url="https://a.example", name="A", group="News", country_code="GB"))
    await db.insert_result(_result(url="https://a.example", name="A", group="News", country_code="GB"))
    await db.insert_result(_result(url="https://b.example", name="B", group="News", country_code="GB"))
    await db.insert_result(_result(url="https://c.example", name="C"))

    hierarchy = await db.query_group_hierarchy()

    by_key = {(h.group, h.country): h for h in hierarchy}
    assert set(by_key) == {("News", "GB"), ("Ungrouped", "Unknown")}
    assert [u.url for u in by_key[("News", "GB")].urls] == ["https://a.example", "https://b.example"]
    assert [u.name for u in by_key[("Ungrouped", "Unknown")].urls] == ["C"]


async def test_query_failed_requests(db):
    await db.insert_result(_result(name="ok"))
    await db.insert_result(
        _result(name="down", success=False, status_code=0, error_message="Connection refused")
    )

    failed = await db.query_failed_requests(timedelta(hours=24))

    assert [r.name for r in failed] == ["down"]
    assert failed[0].error_message == "Connection refused"


async def test_query_group_stats(db):
    await db.insert_result(_result(url="https://a.example", group="News", response_time_ms=100))
    await db.insert_result(
        _result(url="https://a.example", group="News", success=False, status_code=503, response_time_ms=201)
    )
    await db.insert_result(_result(url="https://b.example", group="News", response_time_ms=300))
    await db.insert_result(_result(url="https://c.example"))
    await db.insert_result(_result(url="https://d.example", group=""))
    await db.insert_result(_result(url="https://e.example", group="Shops", minutes_ago=60 * 48))

    groups = await db.query_group_stats(timedelta(hours=24))

    by_group = {g.group: g for g in groups}
    assert list(by_group) == ["News", "Ungrouped"]
    news = by_group["News"]
    assert news.url_count == 2
    assert news.total_requests == 3
    assert news.successful_requests == 2
    assert news.failed_requests == 1
    assert news.success_rate == pytest.approx(200 / 3)
    assert news.average_response_time == 200
    assert by_group["Ungrouped"].url_count == 2


async def test_query_urls_by_group(db):
    await db.insert_result(_result(url="https://b.example", name="B", group="News"))
    await db.insert_result(_result(url="https://a.example", name="A", group="News"))
    await db.insert_result(_result(url="https://a.example", name="A", group="News"))
    await db.insert_result(_result(url="https://c.example", name="C"))

    news = await db.query_urls_by_group("News")
    assert [(u.url, u.name) for u in news] == [("https://a.example", "A"), ("https://b.example", "B")]
    assert [u.name for u in await db.query_urls_by_group("Ungrouped")] == ["C"]
    assert await db.query_urls_by_group("Missing") == []


async def test_query_status_codes(db):
    await db.insert_result(_result(status_code=200, group="News"))
    await db.insert_result(_result(status_code=200))
    await db.insert_result(_result(status_code=0, success=False, error_message="Timed out"))
    await db.insert_result(_result(status_code=503, success=False, group="News"))
    await db.insert_result(_result(status_code=404, success=False, minutes_ago=60 * 48))

    codes = await db.query_status_codes(timedelta(hours=24))
    assert [(c.status_code, c.count) for c in codes] == [(0, 1), (200, 2), (503, 1)]

    news = await db.query_status_codes(timedelta(hours=24), group="News")
    assert [(c.status_code, c.count) for c in news] == [(200, 1), (503, 1)]


async def test_unbounded_time_range_returns_everything(db):
    await db.insert_result(_result(minutes_ago=60 * 24 * 365))

    assert len(await db.query_results(timedelta.max)) == 1


async def test_cleanup_deletes_only_older_rows(db):
    now = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)
    await db.insert_result(_result(now=now - timedelta(days=31)))
    await db.insert_result(_result(now=now - timedelta(days=30, seconds=1)))
    await db.insert_result(_result(now=now - timedelta(days=29)))

    deleted = await db.cleanup(30, now=now)

    assert deleted == 2


async def test_cleanup_keeps_row_exactly_at_boundary(db):
    now = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)
    await db.insert_result(_result(now=now - timedelta(days=30)))

    deleted = await db.cleanup(30, now=now)

    assert deleted == 0


async def test_naive_timestamps_are_treated_as_utc(db):
    now = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)
    await db.insert_result(_result(now=datetime(2026, 1, 1, 0, 0, 0)))

    assert await db.cleanup(30, now=now) == 1


async def test_query_before_init_raises_storage_error(tmp_path):
    database = Database(str(tmp_path / "never-opened.db"))
    with pytest.raises(StorageError):
        await database.query_stats(timedelta(hours=1))


async def test_init_unreachable_path_raises_storage_error(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")
    database = Database(str(blocker / "test.db"))
    with pytest.raises(StorageError):
        await database.init()
