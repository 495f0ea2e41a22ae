import logging
from datetime import UTC, datetime, timedelta
from pathlib import Path

import aiosqlite

from url_monitor.errors import StorageError
from url_monitor.models import (
    UNGROUPED,
    UNKNOWN_COUNTRY,
    CheckResult,
    GroupHierarchy,
    GroupStats,
    GroupURL,
    StatusCodeCount,
    URLStats,
)

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS check_results (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    url              TEXT NOT NULL,
    name             TEXT NOT NULL,
    country_code     TEXT,
    group_name       TEXT,
    timestamp        TEXT NOT NULL,
    status_code      INTEGER NOT NULL,
    response_time_ms INTEGER NOT NULL,
    success          INTEGER NOT NULL,
    error_message    TEXT
);

CREATE INDEX IF NOT EXISTS idx_check_results_timestamp ON check_results (timestamp);
CREATE INDEX IF NOT EXISTS idx_check_results_url ON check_results (url);
CREATE INDEX IF NOT EXISTS idx_check_results_group ON check_results (group_name);
CREATE INDEX IF NOT EXISTS idx_check_results_country ON check_results (country_code);
"""

RESULT_COLUMNS = (
    "id, url, name, country_code, group_name, timestamp, "
    "status_code, response_time_ms, success, error_message"
)


def to_db_timestamp(value: datetime) -> str:
    """UTC ISO-8601 with fixed precision, so string order is time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def _since(time_range: timedelta) -> str:
    try:
        return to_db_timestamp(datetime.now(UTC) - time_range)
    except OverflowError:
        return to_db_timestamp(datetime.min.replace(tzinfo=UTC))


def _group_filter(group: str) -> tuple[str, tuple[object, ...]]:
    """SQL condition for a group label; "Ungrouped" also matches rows without one."""
    if group == UNGROUPED:
        return "(group_name IS NULL OR group_name = '' OR group_name = ?)", (group,)
    return "group_name = ?", (group,)


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


def _row_to_result(row: aiosqlite.Row) -> CheckResult:
    return CheckResult(
        id=row["id"],
        url=row["url"],
        name=row["name"],
        country_code=row["country_code"],
        group=row["group_name"],
        timestamp=datetime.fromisoformat(row["timestamp"]),
        status_code=row["status_code"],
        response_time_ms=row["response_time_ms"],
        success=bool(row["success"]),
        error_message=row["error_message"],
    )


class Database:
    def __init__(self, db_path: str):
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def init(self) -> None:
        try:
            if self._db_path != ":memory:":
                Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
            self._db = await aiosqlite.connect(self._db_path)
            self._db.row_factory = aiosqlite.Row
            await self._db.executescript(SCHEMA)
            await self._db.commit()
        except (OSError, aiosqlite.Error) as exc:
            raise StorageError(f"Cannot open database {self._db_path}: {exc}") from exc

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageError("Database is not initialized")
        return self._db

    async def _fetch_all(self, query: str, params: tuple = ()) -> list[aiosqlite.Row]:
        try:
            cursor = await self._conn().execute(query, params)
            return list(await cursor.fetchall())
        except aiosqlite.Error as exc:
            raise StorageError(str(exc)) from exc

    async def insert_result(self, result: CheckResult) -> int:
        try:
            cursor = await self._conn().execute(
                """INSERT INTO check_results
                   (url, name, country_code, group_name, timestamp,
                    status_code, response_time_ms, success, error_message)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    result.url,
                    result.name,
                    result.country_code,
                    result.group,
                    to_db_timestamp(result.timestamp),
                    result.status_code,
                    result.response_time_ms,
                    int(result.success),
                    result.error_message,
                ),
            )
            await self._conn().commit()
        except aiosqlite.Error as exc:
            raise StorageError(f"Cannot insert result for {result.url}: {exc}") from exc
        return cursor.lastrowid

    async def query_results(
        self,
        time_range: timedelta,
        group: str | None = None,
        name: str | None = None,
    ) -> list[CheckResult]:
        since = _since(time_range)
        query = f"SELECT {RESULT_COLUMNS} FROM check_results WHERE timestamp >= ?"
        params: list[object] = [since]
        if group:
            condition, group_params = _group_filter(group)
            query += f" AND {condition}"
            params.extend(group_params)
        if name:
            query += " AND name = ?"
            params.append(name)
        query += " ORDER BY timestamp DESC, id DESC"

        rows = await self._fetch_all(query, tuple(params))
        return [_row_to_result(row) for row in rows]

    async def query_failed_requests(self, time_range: timedelta) -> list[CheckResult]:
        since = _since(time_range)
        rows = await self._fetch_all(
            f"""SELECT {RESULT_COLUMNS} FROM check_results
                WHERE timestamp >= ? AND success = 0
                ORDER BY timestamp DESC, id DESC""",
            (since,),
        )
        return [_row_to_result(row) for row in rows]

    async def query_stats(self, time_range: timedelta) -> list[URLStats]:
        since = _since(time_range)
        rows = await self._fetch_all(
            """SELECT
                   url, name, group_name, country_code,
                   COUNT(*) AS total_requests,
                   SUM(CASE WHEN success = 1 THEN 1 ELSE 0 END) AS successful_requests,
                   SUM(CASE WHEN success = 0 THEN 1 ELSE 0 END) AS failed_requests,
                   AVG(response_time_ms) AS average_response_time,
                   MAX(timestamp) AS last_checked,
                   (SELECT r2.status_code FROM check_results r2
                     WHERE r2.url = r.url
                       AND r2.name = r.name
                       AND r2.group_name IS r.group_name
                       AND r2.country_code IS r.country_code
                     ORDER BY r2.timestamp DESC, r2.id DESC LIMIT 1) AS last_status
               FROM check_results r
               WHERE timestamp >= ?
               GROUP BY url, name, group_name, country_code
               ORDER BY name""",
            (since,),
        )

        stats = []
        for row in rows:
            total = row["total_requests"]
            successful = row["successful_requests"] or 0
            stats.append(
                URLStats(
                    url=row["url"],
                    name=row["name"],
                    group=row["group_name"],
                    country_code=row["country_code"],
                    total_requests=total,
                    successful_requests=successful,
                    failed_requests=row["failed_requests"] or 0,
                    success_rate=successful * 100 / total if total else 0.0,
                    average_response_time=_round_half_up(row["average_response_time"] or 0),
                    last_checked=(
                        datetime.fromisoformat(row["last_checked"]) if row["last_checked"] else None
                    ),
                    last_status=row["last_status"],
                )
            )
        return stats

    async def query_group_hierarchy(self) -> list[GroupHierarchy]:
        rows = await self._fetch_all(
            """SELECT DISTINCT
                   COALESCE(NULLIF(group_name, ''), ?) AS group_label,
                   COALESCE(NULLIF(country_code, ''), ?) AS country_label,
                   url, name
               FROM check_results
               ORDER BY group_label, country_label, name, url""",
            (UNGROUPED, UNKNOWN_COUNTRY),
        )

        hierarchy: dict[tuple[str, str], GroupHierarchy] = {}
        for row in rows:
            key = (row["group_label"], row["country_label"])
            entry = hierarchy.get(key)
            if entry is None:
                entry = hierarchy[key] = GroupHierarchy(group=key[0], country=key[1])
            if not any(u.url == row["url"] for u in entry.urls):
                entry.urls.append(GroupURL(url=row["url"], name=row["name"]))

        logger.debug("Built group hierarchy with %d groups", len(hierarchy))
        return list(hierarchy.values())

    async def query_group_stats(self, time_range: timedelta) -> list[GroupStats]:
        rows = await self._fetch_all(
            """SELECT
                   COALESCE(NULLIF(group_name, ''), ?) AS group_label,
                   COUNT(DISTINCT url) AS url_count,
                   COUNT(*) AS total_requests,
                   SUM(CASE WHEN success = 1 THEN 1 ELSE 0 END) AS successful_requests,
                   SUM(CASE WHEN success = 0 THEN 1 ELSE 0 END) AS failed_requests,
                   AVG(response_time_ms) AS average_response_time
               FROM check_results
               WHERE timestamp >= ?
               GROUP BY group_label
               ORDER BY group_label""",
            (UNGROUPED, _since(time_range)),
        )
        return [
            GroupStats(
                group=row["group_label"],
                url_count=row["url_count"],
                total_requests=row["total_requests"],
                successful_requests=row["successful_requests"] or 0,
                failed_requests=row["failed_requests"] or 0,
                success_rate=(row["successful_requests"] or 0) * 100 / row["total_requests"],
                average_response_time=_round_half_up(row["average_response_time"] or 0),
            )
            for row in rows
        ]

    async def query_urls_by_group(self, group: str) -> list[GroupURL]:
        condition, params = _group_filter(group)
        rows = await self._fetch_all(
            f"""SELECT DISTINCT url, name FROM check_results
                WHERE {condition}
                ORDER BY name, url""",
            params,
        )
        return [GroupURL(url=row["url"], name=row["name"]) for row in rows]

    async def query_status_codes(
        self, time_range: timedelta, group: str | None = None
    ) -> list[StatusCodeCount]:
        query = "SELECT status_code, COUNT(*) AS count FROM check_results WHERE timestamp >= ?"
        params: list[object] = [_since(time_range)]
        if group:
            condition, group_params = _group_filter(group)
            query += f" AND {condition}"
            params.extend(group_params)
        query += " GROUP BY status_code ORDER BY status_code"

        rows = await self._fetch_all(query, tuple(params))
        return [StatusCodeCount(status_code=row["status_code"], count=row["count"]) for row in rows]

    async def cleanup(self, older_than_days: int = 30, now: datetime | None = None) -> int:
        """Delete results strictly older than the cutoff; rows at the cutoff are kept."""
        now = now or datetime.now(UTC)
        cutoff = to_db_timestamp(now - timedelta(days=older_than_days))
        try:
            cursor = await self._conn().execute(
                "DELETE FROM check_results WHERE timestamp < ?",
                (cutoff,),
            )
            await self._conn().commit()
        except aiosqlite.Error as exc:
            raise StorageError(f"Cleanup failed: {exc}") from exc
        deleted = cursor.rowcount
        if deleted:
            logger.info("Deleted %d results older than %d days", deleted, older_than_days)
        return deleted
