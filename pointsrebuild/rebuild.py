"""
Points rebuild driver.

Responsibilities:
- Run reset, ingest and recalc against the remote points API, in order.
- Bound the ingest loop by a round cap; bound recalc by cursor progress.

Non-Responsibilities:
- No points math; the remote endpoints own all state.
- No rollback: a failed recalc leaves reset/ingest effects in place.

Invariant:
Each successful recalc call must strictly advance the cursor, or the loop ends.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Optional

from .client import PointsApiClient
from .config import JobConfiguration

RESET_PATH = "/api/points/reset"
INGEST_PATH = "/api/points/ingest"
RECALC_PATH = "/api/points/recalc"


@dataclass
class ResetResult:
    deleted: int
    season_id: str


@dataclass
class IngestRound:
    round: int
    ingested_wallets: float
    cursor_updates: float
    updated_at: int


@dataclass
class IngestResult:
    rounds: List[IngestRound] = field(default_factory=list)
    stop_reason: str = "round_cap"  # drained | round_cap


@dataclass
class RecalcResult:
    rounds: int = 0
    processed: int = 0
    cursor: float = 0
    # done | no_next_cursor | invalid_cursor | cursor_not_advancing
    stop_reason: str = ""


@dataclass
class RebuildSummary:
    reset: Optional[ResetResult] = None
    ingest: Optional[IngestResult] = None
    recalc: Optional[RecalcResult] = None


def as_number(value: Any) -> float:
    """Numeric response field as a float; absent or malformed values read as 0."""
    if isinstance(value, bool):
        return float(value)
    try:
        number = float(value or 0)
    except (TypeError, ValueError):
        return 0.0
    except OverflowError:
        # integers beyond float range
        return math.inf if value > 0 else -math.inf
    if math.isnan(number):
        return 0.0
    return number


def as_count(value: Any) -> int:
    """Integer view of a numeric response field, for reporting."""
    number = as_number(value)
    if not math.isfinite(number):
        return 0
    return int(number)


def parse_cursor(raw: Any) -> Optional[float]:
    """Parse a nextCursor value; None when it is not a finite number."""
    if isinstance(raw, bool):
        return int(raw)
    try:
        number = float(raw)
    except (TypeError, ValueError, OverflowError):
        return None
    if not math.isfinite(number):
        return None
    return int(number) if number.is_integer() else number


def format_number(number: float) -> str:
    if math.isfinite(number) and number.is_integer():
        return str(int(number))
    return str(number)


def format_updated_at(updated_at: int) -> str:
    if updated_at <= 0:
        return "n/a"
    try:
        stamp = datetime.fromtimestamp(updated_at / 1000.0, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return "n/a"
    return stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class PointsRebuild:
    """Sequential reset -> ingest -> recalc run over a PointsApiClient."""

    def __init__(self, config: JobConfiguration, client: PointsApiClient):
        self.config = config
        self.client = client
        self.logger = client.logger
        self.sleep = client.sleep

    def run_reset(self) -> ResetResult:
        self.logger.info("reset...")
        payload = self.client.call(RESET_PATH, {"seasonId": self.config.season_id})
        result = ResetResult(
            deleted=as_count(payload.get("deleted")),
            season_id=str(payload.get("seasonId") or self.config.season_id or "auto"),
        )
        self.logger.info(f"reset ok: deleted={result.deleted} season={result.season_id}")
        return result

    def run_ingest(self) -> IngestResult:
        """
        Call ingest until a round reports no work, up to max_ingest_rounds.

        Reaching the round cap is not an error.
        """
        self.logger.info("ingest loop...")
        result = IngestResult()
        params = {"seasonId": self.config.season_id}
        if self.config.ingest_window_seconds is not None:
            params["ingestWindowSeconds"] = self.config.ingest_window_seconds

        for round_no in range(1, self.config.max_ingest_rounds + 1):
            payload = self.client.call(INGEST_PATH, params)
            ingest_round = IngestRound(
                round=round_no,
                ingested_wallets=as_number(payload.get("ingestedWallets")),
                cursor_updates=as_number(payload.get("cursorUpdates")),
                updated_at=as_count(payload.get("updatedAt")),
            )
            result.rounds.append(ingest_round)
            self.logger.record_ingest_round()
            self.logger.info(
                f"ingest #{round_no}: wallets={format_number(ingest_round.ingested_wallets)} "
                f"cursorUpdates={format_number(ingest_round.cursor_updates)} "
                f"updatedAt={format_updated_at(ingest_round.updated_at)}"
            )
            if ingest_round.ingested_wallets <= 0 and ingest_round.cursor_updates <= 0:
                result.stop_reason = "drained"
                break
            if round_no < self.config.max_ingest_rounds and self.config.ingest_round_delay > 0:
                self.sleep(self.config.ingest_round_delay)
        else:
            self.logger.warning(
                f"ingest stopped at round cap ({self.config.max_ingest_rounds}) with work remaining"
            )

        return result

    def run_recalc(self) -> RecalcResult:
        """
        Page through recalc from cursor 0 until the backend reports
        completion or stops advancing the cursor.
        """
        self.logger.info("recalc loop...")
        result = RecalcResult()
        cursor = 0
        while True:
            result.rounds += 1
            payload = self.client.call(
                RECALC_PATH,
                {
                    "seasonId": self.config.season_id,
                    "cursor": cursor,
                    "limit": self.config.recalc_limit,
                    "fast": 1 if self.config.recalc_fast else "",
                },
            )
            processed = as_count(payload.get("processed"))
            next_raw = payload.get("nextCursor")
            done = bool(payload.get("done"))
            result.processed += processed
            self.logger.record_recalc_round(processed)
            self.logger.info(
                f"recalc #{result.rounds}: processed={processed} cursor={cursor} "
                f"next={'null' if next_raw is None else next_raw} done={str(done).lower()}"
            )

            if done:
                result.stop_reason = "done"
                break
            if next_raw is None or next_raw == "":
                result.stop_reason = "no_next_cursor"
                break
            next_cursor = parse_cursor(next_raw)
            if next_cursor is None:
                result.stop_reason = "invalid_cursor"
                self.logger.warning(f"recalc returned a non-numeric cursor: {next_raw!r}")
                break
            if next_cursor <= cursor:
                result.stop_reason = "cursor_not_advancing"
                self.logger.warning(
                    f"recalc cursor did not advance ({cursor} -> {next_cursor}); stopping"
                )
                break
            cursor = next_cursor

        result.cursor = cursor
        return result

    def run(self) -> RebuildSummary:
        """
        Execute all enabled stages in order.

        Raises:
            CallError: From the first stage whose call fails permanently
        """
        config = self.config
        self.logger.info(f"base={config.base_url}")
        if config.season_id:
            self.logger.info(f"season={config.season_id}")
        self.logger.info(f"callTimeoutMs={config.call_timeout_ms}")
        if config.ingest_window_seconds is not None:
            self.logger.info(f"ingestWindowSeconds={config.ingest_window_seconds}")

        summary = RebuildSummary()
        if config.skip_reset:
            self.logger.info("reset skipped (POINTS_SKIP_RESET=1).")
        else:
            summary.reset = self.run_reset()

        if config.skip_ingest:
            self.logger.info("ingest skipped (POINTS_SKIP_INGEST=1).")
        else:
            summary.ingest = self.run_ingest()

        summary.recalc = self.run_recalc()
        self.logger.info("done.")
        return summary
