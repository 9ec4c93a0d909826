"""
Tests for the reset/ingest/recalc stage driver.
"""

import pytest

from conftest import FakeResponse
from pointsrebuild.client import PointsApiClient
from pointsrebuild.rebuild import (
    PointsRebuild,
    as_count,
    as_number,
    format_updated_at,
    parse_cursor,
)
from pointsrebuild.retry import CallError


@pytest.fixture
def make_rebuild(config, session, sleep, logger):
    def factory(**overrides):
        cfg = config.with_overrides(**overrides)
        client = PointsApiClient(cfg, session=session, sleep=sleep, logger=logger)
        return PointsRebuild(cfg, client)
    return factory


class TestHelpers:

    def test_as_count(self):
        assert as_count(None) == 0
        assert as_count("7") == 7
        assert as_count(3.9) == 3
        assert as_count("abc") == 0
        assert as_count(float("nan")) == 0
        assert as_count(10 ** 400) == 0

    def test_as_number_keeps_fractions_and_overflow(self):
        assert as_number(0.5) == 0.5
        assert as_number(None) == 0.0
        assert as_number("x") == 0.0
        assert as_number(10 ** 400) == float("inf")
        assert as_number(-(10 ** 400)) == float("-inf")

    def test_parse_cursor(self):
        assert parse_cursor(500) == 500
        assert parse_cursor("750") == 750
        assert parse_cursor("12.5") == 12.5
        assert parse_cursor("next-page") is None
        assert parse_cursor(float("inf")) is None
        assert parse_cursor({"page": 2}) is None
        assert parse_cursor(10 ** 400) is None

    def test_format_updated_at(self):
        assert format_updated_at(0) == "n/a"
        assert format_updated_at(1700000000000) == "2023-11-14T22:13:20.000Z"


class TestReset:

    def test_reset_reports_deleted_and_season(self, make_rebuild, session):
        session.queue({"deleted": 12, "seasonId": "s1"})
        result = make_rebuild().run_reset()
        assert result.deleted == 12
        assert result.season_id == "s1"
        assert session.requests[0]["url"].endswith("/api/points/reset?seasonId=s1")

    def test_reset_season_falls_back_to_auto(self, make_rebuild, session):
        session.queue({"deleted": 0})
        assert make_rebuild(season_id="").run_reset().season_id == "auto"


class TestIngestLoop:

    def test_stops_when_both_counts_zero(self, make_rebuild, session, sleep):
        session.queue(
            {"ingestedWallets": 5, "cursorUpdates": 0},
            {"ingestedWallets": 0, "cursorUpdates": 0},
        )

        result = make_rebuild().run_ingest()

        assert len(result.rounds) == 2
        assert result.stop_reason == "drained"
        assert sleep.calls == [1.2]

    def test_fractional_count_keeps_looping(self, make_rebuild, session):
        session.queue(
            {"ingestedWallets": 0.5, "cursorUpdates": 0},
            {"ingestedWallets": 0, "cursorUpdates": 0},
        )

        result = make_rebuild().run_ingest()

        assert len(result.rounds) == 2
        assert result.rounds[0].ingested_wallets == 0.5
        assert result.stop_reason == "drained"

    def test_absent_counts_mean_no_work(self, make_rebuild, session):
        session.queue({})
        result = make_rebuild().run_ingest()
        assert len(result.rounds) == 1
        assert result.stop_reason == "drained"

    def test_cursor_updates_alone_keep_looping(self, make_rebuild, session):
        session.queue(
            {"ingestedWallets": 0, "cursorUpdates": 2},
            {"ingestedWallets": 0, "cursorUpdates": 0},
        )
        assert len(make_rebuild().run_ingest().rounds) == 2

    def test_round_cap_is_not_an_error(self, make_rebuild, session, sleep):
        session.queue(*[{"ingestedWallets": 1, "cursorUpdates": 1} for _ in range(3)])

        result = make_rebuild(max_ingest_rounds=3).run_ingest()

        assert len(result.rounds) == 3
        assert result.stop_reason == "round_cap"
        assert len(session.requests) == 3
        # no pause after the final round
        assert sleep.calls == [1.2, 1.2]

    def test_zero_round_delay_skips_pause(self, make_rebuild, session, sleep):
        session.queue(
            {"ingestedWallets": 1, "cursorUpdates": 0},
            {"ingestedWallets": 0, "cursorUpdates": 0},
        )
        make_rebuild(ingest_round_delay_ms=0).run_ingest()
        assert sleep.calls == []

    def test_forwards_window_seconds(self, make_rebuild, session):
        session.queue({})
        make_rebuild(ingest_window_seconds=3600).run_ingest()
        assert session.requests[0]["url"].endswith("/api/points/ingest?seasonId=s1&ingestWindowSeconds=3600")


class TestRecalcLoop:

    def test_done_stops_regardless_of_cursor(self, make_rebuild, session):
        session.queue({"processed": 10, "nextCursor": 900, "done": True})
        result = make_rebuild().run_recalc()
        assert result.rounds == 1
        assert result.stop_reason == "done"

    def test_advances_cursor_until_null(self, make_rebuild, session):
        session.queue(
            {"processed": 500, "nextCursor": 500, "done": False},
            {"processed": 500, "nextCursor": "1000", "done": False},
            {"processed": 3, "nextCursor": None, "done": False},
        )

        result = make_rebuild().run_recalc()

        assert result.rounds == 3
        assert result.processed == 1003
        assert result.cursor == 1000
        assert result.stop_reason == "no_next_cursor"
        urls = [r["url"] for r in session.requests]
        assert "cursor=0&limit=500" in urls[0]
        assert "cursor=500&limit=500" in urls[1]
        assert "cursor=1000&limit=500" in urls[2]

    @pytest.mark.parametrize("stalled", [50, 10])
    def test_non_advancing_cursor_terminates(self, make_rebuild, session, stalled):
        session.queue(
            {"processed": 50, "nextCursor": 50, "done": False},
            {"processed": 0, "nextCursor": stalled, "done": False},
        )

        result = make_rebuild().run_recalc()

        assert result.rounds == 2
        assert result.cursor == 50
        assert result.stop_reason == "cursor_not_advancing"

    def test_cursor_zero_does_not_advance(self, make_rebuild, session):
        session.queue({"processed": 0, "nextCursor": 0, "done": False})
        assert make_rebuild().run_recalc().stop_reason == "cursor_not_advancing"

    def test_empty_string_cursor_terminates(self, make_rebuild, session):
        session.queue({"processed": 1, "nextCursor": "", "done": False})
        assert make_rebuild().run_recalc().stop_reason == "no_next_cursor"

    def test_non_numeric_cursor_terminates(self, make_rebuild, session):
        session.queue({"processed": 1, "nextCursor": "abc", "done": False})
        assert make_rebuild().run_recalc().stop_reason == "invalid_cursor"

    def test_huge_integer_cursor_terminates(self, make_rebuild, session):
        session.queue(FakeResponse(200, text='{"processed": 1, "nextCursor": 1' + "0" * 400 + ', "done": false}'))

        result = make_rebuild().run_recalc()

        assert result.rounds == 1
        assert result.cursor == 0
        assert result.stop_reason == "invalid_cursor"

    def test_malformed_body_terminates(self, make_rebuild, session):
        session.queue(FakeResponse(200, text="gateway says hi"))
        result = make_rebuild().run_recalc()
        assert result.rounds == 1
        assert result.stop_reason == "no_next_cursor"

    def test_fast_flag_forwarded_only_when_enabled(self, make_rebuild, session):
        session.queue({"done": True})
        make_rebuild(recalc_fast=True, recalc_limit=40).run_recalc()
        assert session.requests[0]["url"].endswith("/api/points/recalc?seasonId=s1&cursor=0&limit=40&fast=1")


class TestFullRun:

    def test_end_to_end(self, make_rebuild, session, logger):
        session.queue(
            {"deleted": 12, "seasonId": "s1"},
            {"ingestedWallets": 3, "cursorUpdates": 1},
            {"ingestedWallets": 0, "cursorUpdates": 0},
            {"processed": 500, "nextCursor": 500, "done": False},
            {"processed": 10, "nextCursor": None, "done": True},
        )

        summary = make_rebuild().run()

        assert summary.reset.deleted == 12
        assert len(summary.ingest.rounds) == 2
        assert summary.recalc.rounds == 2
        assert summary.recalc.processed == 510
        assert session.paths() == [
            "/api/points/reset",
            "/api/points/ingest",
            "/api/points/ingest",
            "/api/points/recalc",
            "/api/points/recalc",
        ]
        assert logger.metrics["ingest_rounds"] == 2
        assert logger.metrics["recalc_rounds"] == 2

    def test_skip_flags(self, make_rebuild, session):
        session.queue({"done": True})

        summary = make_rebuild(skip_reset=True, skip_ingest=True).run()

        assert summary.reset is None
        assert summary.ingest is None
        assert session.paths() == ["/api/points/recalc"]

    def test_failed_stage_aborts_run(self, make_rebuild, session):
        session.queue(FakeResponse(403, {"error": "bad token"}))

        with pytest.raises(CallError, match="bad token"):
            make_rebuild().run()

        assert session.paths() == ["/api/points/reset"]

    def test_recalc_failure_after_retries(self, make_rebuild, session, sleep):
        session.queue(
            {"deleted": 0},
            {},
            FakeResponse(500, text="down"),
            FakeResponse(500, text="still down"),
        )

        with pytest.raises(CallError, match="still down"):
            make_rebuild(max_call_retries=1).run()

        assert sleep.calls == [3.0]
