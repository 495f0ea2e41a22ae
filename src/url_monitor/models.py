from datetime import UTC, datetime

from pydantic import BaseModel, Field, field_validator, model_validator

UNGROUPED = "Ungrouped"
UNKNOWN_COUNTRY = "Unknown"


class GlobalConfig(BaseModel):
    check_interval_seconds: float = Field(default=60, gt=0)
    timeout_seconds: float = Field(default=30, gt=0)
    user_agent: str = "URL-Monitor/1.0"
    db_path: str = "monitor.db"
    log_level: str = "INFO"
    failure_threshold: int = Field(default=3, ge=1)
    cleanup_days: int = Field(default=30, ge=1)


class NotificationConfig(BaseModel):
    webhook_url: str | None = None
    dashboard_url: str = "http://localhost:3000"
    timeout_seconds: float = 10

    @field_validator("webhook_url")
    @classmethod
    def _blank_is_disabled(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            return None
        return value


class DashboardConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 3000


class URLTarget(BaseModel):
    url: str
    name: str = ""
    country_code: str | None = None
    group: str | None = None
    interval_seconds: float | None = Field(default=None, gt=0)

    model_config = {"frozen": True}

    @field_validator("url")
    @classmethod
    def _require_http_scheme(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"URL must start with http:// or https://: {value!r}")
        return value

    @field_validator("country_code", "group")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @field_validator("country_code")
    @classmethod
    def _upper_country(cls, value: str | None) -> str | None:
        return value.upper() if value else value

    @model_validator(mode="before")
    @classmethod
    def _default_name(cls, data: object) -> object:
        if isinstance(data, dict) and not str(data.get("name") or "").strip():
            data = {**data, "name": str(data.get("url") or "").strip()}
        return data


class AppConfig(BaseModel):
    global_: GlobalConfig = Field(alias="global", default_factory=GlobalConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    dashboard: DashboardConfig = Field(default_factory=DashboardConfig)
    targets: list[URLTarget]

    model_config = {"populate_by_name": True}


class CheckResult(BaseModel):
    id: int | None = None
    url: str
    name: str
    country_code: str | None = None
    group: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    status_code: int = 0
    response_time_ms: int = 0
    success: bool
    error_message: str | None = None


class URLStats(BaseModel):
    url: str
    name: str
    group: str | None = None
    country_code: str | None = None
    total_requests: int
    successful_requests: int
    failed_requests: int
    success_rate: float
    average_response_time: int
    last_checked: datetime | None = None
    last_status: int | None = None


class GroupURL(BaseModel):
    url: str
    name: str


class GroupHierarchy(BaseModel):
    group: str = UNGROUPED
    country: str = UNKNOWN_COUNTRY
    urls: list[GroupURL] = Field(default_factory=list)


class GroupStats(BaseModel):
    group: str = UNGROUPED
    url_count: int
    total_requests: int
    successful_requests: int
    failed_requests: int
    success_rate: float
    average_response_time: int


class StatusCodeCount(BaseModel):
    status_code: int
    count: int
