import csv
import logging
import os
import re
from pathlib import Path

import yaml
from pydantic import ValidationError

from url_monitor.errors import ConfigurationError
from url_monitor.models import AppConfig, URLTarget

logger = logging.getLogger(__name__)

ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)(?::-([^}]*))?\}")

# CSV header -> URLTarget field
CSV_COLUMNS = {
    "url": "url",
    "name": "name",
    "countryCode": "country_code",
    "country_code": "country_code",
    "group": "group",
    "group_name": "group",
    "interval": "interval_seconds",
    "interval_seconds": "interval_seconds",
}


def _substitute_env_vars(value: str) -> str:
    def replace(match: re.Match) -> str:
        var_name, default = match.group(1), match.group(2)
        env_value = os.environ.get(var_name)
        if env_value is None:
            if default is None:
                raise ConfigurationError(f"Environment variable {var_name} is not set")
            return default
        return env_value

    return ENV_VAR_PATTERN.sub(replace, value)


def _walk_and_substitute(obj: object) -> object:
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _walk_and_substitute(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_walk_and_substitute(item) for item in obj]
    return obj


def parse_targets(entries: list[object], source: str) -> list[URLTarget]:
    """Validate raw target entries one by one, skipping the invalid ones."""
    targets: list[URLTarget] = []
    for index, entry in enumerate(entries):
        try:
            targets.append(URLTarget.model_validate(entry))
        except ValidationError as exc:
            errors = "; ".join(err["msg"] for err in exc.errors())
            logger.warning("Skipping invalid target #%d in %s: %s", index + 1, source, errors)
    return targets


def load_targets_csv(path: str | Path) -> list[URLTarget]:
    path = Path(path)
    rows: list[dict[str, str]] = []
    with path.open(newline="", encoding="utf-8") as f:
        for row in csv.DictReader(f):
            entry = {
                CSV_COLUMNS[key.strip()]: value.strip()
                for key, value in row.items()
                if key and key.strip() in CSV_COLUMNS and value and value.strip()
            }
            rows.append(entry)

    targets = parse_targets(rows, str(path))
    logger.info("Loaded %d targets from CSV file %s", len(targets), path)
    return targets


def load_config(path: str | Path, targets_csv: str | Path | None = None) -> AppConfig:
    """Load and validate the YAML (or JSON) config, merging any CSV target list.

    Individual targets that fail validation are skipped with a warning. Raises
    ConfigurationError when the file is unusable or no valid target remains.
    """
    path = Path(path)
    try:
        with path.open() as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Cannot read config {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Config {path} must be a mapping")

    substituted = _walk_and_substitute(raw)
    targets = parse_targets(substituted.pop("targets", None) or [], str(path))

    csv_path = targets_csv or substituted.pop("targets_csv", None)
    substituted.pop("targets_csv", None)
    if csv_path:
        try:
            targets.extend(load_targets_csv(csv_path))
        except OSError as exc:
            if targets_csv or not targets:
                raise ConfigurationError(f"Cannot read targets CSV {csv_path}: {exc}") from exc
            logger.warning("Ignoring unreadable targets CSV %s: %s", csv_path, exc)

    if not targets:
        raise ConfigurationError(f"No valid targets configured in {path}")

    try:
        return AppConfig.model_validate({**substituted, "targets": targets})
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid config {path}: {exc}") from exc
