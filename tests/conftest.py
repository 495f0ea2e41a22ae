import pytest

from url_monitor.database import Database
from url_monitor.models import (
    AppConfig,
    DashboardConfig,
    GlobalConfig,
    NotificationConfig,
    URLTarget,
)


@pytest.fixture
def notification_config():
    return NotificationConfig(
        webhook_url="https://hooks.test.com/services/T000/B000/XXX",
        dashboard_url="http://localhost:3000",
    )


@pytest.fixture
def target():
    return URLTarget(
        url="https://example.com/health",
        name="test-site",
        country_code="DE",
        group="Marketing",
    )


@pytest.fixture
def app_config(tmp_path, notification_config, target):
    return AppConfig(
        **{
            "global": GlobalConfig(
                check_interval_seconds=60,
                timeout_seconds=5,
                db_path=str(tmp_path / "test.db"),
                log_level="DEBUG",
            ),
            "notifications": notification_config,
            "dashboard": DashboardConfig(port=3001),
            "targets": [target],
        }
    )


@pytest.fixture
async def db(tmp_path):
    database = Database(str(tmp_path / "test.db"))
    await database.init()
    yield database
    await database.close()
