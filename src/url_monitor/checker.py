import asyncio
import logging
import time
from datetime import UTC, datetime

import httpx

from url_monitor.models import CheckResult, URLTarget

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "URL-Monitor/1.0"
DEFAULT_ACCEPT_LANGUAGE = "en-US,en;q=0.9"

ACCEPT_LANGUAGES = {
    "US": "en-US,en;q=0.9",
    "GB": "en-GB,en;q=0.9",
    "CA": "en-CA,en;q=0.9,fr-CA;q=0.8",
    "AU": "en-AU,en;q=0.9",
    "DE": "de-DE,de;q=0.9,en;q=0.8",
    "FR": "fr-FR,fr;q=0.9,en;q=0.8",
    "ES": "es-ES,es;q=0.9,en;q=0.8",
    "IT": "it-IT,it;q=0.9,en;q=0.8",
    "BR": "pt-BR,pt;q=0.9,en;q=0.8",
    "JP": "ja-JP,ja;q=0.9,en;q=0.8",
    "KR": "ko-KR,ko;q=0.9,en;q=0.8",
}

COUNTRY_REGIONS = {
    "US": "NA",
    "CA": "NA",
    "GB": "EU",
    "DE": "EU",
    "FR": "EU",
    "AU": "APAC",
}


def is_success_status(status_code: int) -> bool:
    """A received response counts as a success when its status is 2xx or 3xx."""
    return 200 <= status_code < 400


def build_headers(target: URLTarget, user_agent: str = DEFAULT_USER_AGENT) -> dict[str, str]:
    headers = {
        "User-Agent": user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.5",
    }
    if target.country_code:
        headers["Accept-Language"] = ACCEPT_LANGUAGES.get(
            target.country_code, DEFAULT_ACCEPT_LANGUAGE
        )
        region = COUNTRY_REGIONS.get(target.country_code)
        if region:
            headers["Cookie"] = f"country={target.country_code}; region={region}"
    return headers


def _failure(target: URLTarget, elapsed_ms: int, error: str) -> CheckResult:
    return CheckResult(
        url=target.url,
        name=target.name,
        country_code=target.country_code,
        group=target.group,
        timestamp=datetime.now(UTC),
        status_code=0,
        response_time_ms=elapsed_ms,
        success=False,
        error_message=error,
    )


async def probe(
    target: URLTarget, timeout: float, user_agent: str = DEFAULT_USER_AGENT
) -> CheckResult:
    """Issue one GET against the target. Never raises."""
    headers = build_headers(target, user_agent)
    start = time.monotonic()
    try:
        async with httpx.AsyncClient() as client:
            response = await asyncio.wait_for(
                client.get(target.url, headers=headers, timeout=timeout, follow_redirects=True),
                timeout=timeout,
            )
    except TimeoutError:
        elapsed_ms = round((time.monotonic() - start) * 1000)
        error = f"Timed out after {timeout}s"
        logger.warning("%s: %s (%dms)", target.name, error, elapsed_ms)
        return _failure(target, elapsed_ms, error)
    except Exception as exc:
        elapsed_ms = round((time.monotonic() - start) * 1000)
        error = str(exc) or type(exc).__name__
        logger.warning("%s: %s (%dms)", target.name, error, elapsed_ms)
        return _failure(target, elapsed_ms, error)

    elapsed_ms = round((time.monotonic() - start) * 1000)
    success = is_success_status(response.status_code)
    logger.info("%s: %d (%dms)", target.name, response.status_code, elapsed_ms)
    return CheckResult(
        url=target.url,
        name=target.name,
        country_code=target.country_code,
        group=target.group,
        timestamp=datetime.now(UTC),
        status_code=response.status_code,
        response_time_ms=elapsed_ms,
        success=success,
        error_message=None if success else f"HTTP {response.status_code}",
    )
