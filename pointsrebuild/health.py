"""Freshness check against the points health endpoint."""

from dataclasses import dataclass
from typing import Optional

from .client import PointsApiClient, error_detail
from .retry import CallError

HEALTH_PATH = "/api/points/health"


@dataclass
class HealthStatus:
    healthy: bool
    season_id: str
    updated_at: Optional[int]
    age_ms: Optional[int]
    reason: str


def check_health(client: PointsApiClient, season_id: str = "") -> HealthStatus:
    """
    Ask the backend whether the points data is fresh.

    A 503 is a valid "stale" answer, not a failure.

    Raises:
        CallError: On network failure or any status other than 200/503
    """
    reply = client.send("GET", HEALTH_PATH, {"seasonId": season_id})
    payload = reply.payload
    if reply.status not in (200, 503):
        client.logger.record_failure(reply.status)
        raise CallError(HEALTH_PATH, reply.status, error_detail(payload, reply.text, reply.status))

    healthy = bool(payload.get("healthy")) and reply.status == 200
    status = HealthStatus(
        healthy=healthy,
        season_id=str(payload.get("seasonId") or season_id or ""),
        updated_at=payload.get("updatedAt"),
        age_ms=payload.get("ageMs"),
        reason=str(payload.get("reason") or payload.get("error") or ("fresh" if healthy else "unknown")),
    )
    log = client.logger.info if healthy else client.logger.warning
    log(
        f"health: healthy={str(healthy).lower()} season={status.season_id or 'n/a'} "
        f"ageMs={status.age_ms if status.age_ms is not None else 'n/a'} reason={status.reason}"
    )
    return status
