"""Static export of dashboard data for hosting without a running process.

Each file mirrors the JSON body of the matching ``/api/*`` endpoint, so a
static front-end can read ``<dir>/stats.json`` instead of ``/api/stats``.
"""

import json
import logging
from datetime import UTC, datetime, timedelta
from pathlib import Path

from pydantic import BaseModel

from url_monitor.database import Database

logger = logging.getLogger(__name__)

RESULTS_RANGE = timedelta(days=7)
STATS_RANGE = timedelta(hours=24)
FAILED_RANGE = timedelta(hours=24)


def _write_json(path: Path, items: list[BaseModel] | dict) -> None:
    if isinstance(items, dict):
        data = items
    else:
        data = [item.model_dump(mode="json") for item in items]
    path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")


async def write_snapshot(db: Database, output_dir: str | Path) -> dict[str, int]:
    """Write the snapshot files and return the number of records in each."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    results = await db.query_results(RESULTS_RANGE)
    stats = await db.query_stats(STATS_RANGE)
    hierarchy = await db.query_group_hierarchy()
    failed = await db.query_failed_requests(FAILED_RANGE)
    groups = await db.query_group_stats(STATS_RANGE)
    status_codes = await db.query_status_codes(STATS_RANGE)

    _write_json(output_dir / "results.json", results)
    _write_json(output_dir / "stats.json", stats)
    _write_json(output_dir / "group-hierarchy.json", hierarchy)
    _write_json(output_dir / "failed-requests.json", failed)
    _write_json(output_dir / "groups.json", groups)
    _write_json(output_dir / "status-codes.json", status_codes)
    _write_json(output_dir / "generated.json", {"generated_at": datetime.now(UTC).isoformat()})

    counts = {
        "results": len(results),
        "stats": len(stats),
        "group-hierarchy": len(hierarchy),
        "failed-requests": len(failed),
        "groups": len(groups),
        "status-codes": len(status_codes),
    }
    logger.info(
        "Snapshot written to %s: %d results, %d targets, %d groups, %d failures",
        output_dir,
        counts["results"],
        counts["stats"],
        counts["group-hierarchy"],
        counts["failed-requests"],
    )
    return counts
