import importlib.util
from pathlib import Path
from datetime import datetime, timedelta, timezone
import pytest

spec = importlib.util.spec_from_file_location(
    "claude_token_monitor", Path(__file__).resolve().parents[1] / "claude_token_monitor.py"
)
assert spec and spec.loader
monitor = importlib.util.module_from_spec(spec)
spec.loader.exec_module(monitor)

NOW = datetime(2024, 1, 1, 10, 30, tzinfo=timezone.utc)


class FakeSource:
    """Returns the same snapshot on every fetch."""

    def __init__(self, blocks):
        self.blocks = blocks
        self.calls = 0

    def fetch(self):
        self.calls += 1
        return self.blocks


class FailingSource:
    def fetch(self):
        raise monitor.DataSourceError("ccusage exploded")


def make_state(**kwargs):
    kwargs.setdefault("plan", "pro")
    kwargs.setdefault("token_limit", 7000)
    kwargs.setdefault("timezone", "UTC")
    return monitor.MonitorState(**kwargs)


def active_session(tokens=3000, minutes=30):
    return monitor.UsageBlock(
        start_time=NOW - timedelta(minutes=minutes), is_active=True, total_tokens=tokens
    )


def test_tick_skips_on_fetch_failure():
    state = make_state()
    new_state, result = monitor.tick(state, FailingSource(), NOW)

    assert result.skipped
    assert result.message == monitor.FETCH_FAILED_MESSAGE
    assert result.detail == "ccusage exploded"
    assert new_state == state


def test_tick_skips_without_active_session():
    source = FakeSource([monitor.UsageBlock(start_time=NOW - timedelta(hours=2), total_tokens=10)])
    _, result = monitor.tick(make_state(), source, NOW)

    assert result.skipped
    assert result.message == monitor.NO_ACTIVE_SESSION_MESSAGE


def test_tick_computes_metrics():
    source = FakeSource([active_session()])
    state, result = monitor.tick(make_state(), source, NOW)
    metrics = result.metrics

    assert not result.skipped
    assert metrics.tokens_used == 3000
    assert metrics.token_limit == 7000
    assert metrics.tokens_left == 4000
    assert metrics.usage_percentage == pytest.approx(3000 / 7000 * 100)
    assert metrics.burn_rate == pytest.approx(50.0)
    assert metrics.velocity_category == "normal"
    assert metrics.reset_time == datetime(2024, 1, 1, 14, 0, tzinfo=timezone.utc)
    assert metrics.predicted_end_time == NOW + timedelta(minutes=80)
    assert metrics.time_since_reset == pytest.approx(90)
    assert metrics.runs_out_before_reset
    assert not metrics.limit_exceeded
    assert state.burn_rate_history == (metrics.burn_rate,)


def test_tick_first_active_block_wins():
    blocks = [active_session(tokens=1000), active_session(tokens=6000)]
    _, result = monitor.tick(make_state(), FakeSource(blocks), NOW)
    assert result.metrics.tokens_used == 1000


def test_tick_uses_custom_reset_hour():
    _, result = monitor.tick(make_state(custom_reset_hour=11), FakeSource([active_session()]), NOW)
    assert result.metrics.reset_time == datetime(2024, 1, 1, 11, 0, tzinfo=timezone.utc)
    # 4000 tokens at 50/min outlast the 11:00 reset
    assert result.metrics.predicted_end_time == result.metrics.reset_time


def test_same_snapshot_twice_gives_same_metrics():
    source = FakeSource([active_session()])
    state, first = monitor.tick(make_state(), source, NOW)
    state, second = monitor.tick(state, source, NOW)

    assert first.metrics.burn_rate == second.metrics.burn_rate
    assert first.metrics.predicted_end_time == second.metrics.predicted_end_time
    assert len(state.burn_rate_history) == 2


def test_burn_rate_history_is_bounded():
    source = FakeSource([active_session()])
    state = make_state()
    for _ in range(monitor.BURN_RATE_HISTORY_SIZE + 10):
        state, _ = monitor.tick(state, source, NOW)

    assert len(state.burn_rate_history) == monitor.BURN_RATE_HISTORY_SIZE


def test_record_burn_rate_keeps_newest():
    history = tuple(float(i) for i in range(monitor.BURN_RATE_HISTORY_SIZE))
    updated = monitor.record_burn_rate(history, 999.0)
    assert updated[-1] == 999.0
    assert updated[0] == 1.0


def test_tick_ratchets_limit_and_notifies_once():
    blocks = [
        monitor.UsageBlock(
            start_time=NOW - timedelta(hours=6),
            actual_end_time=NOW - timedelta(hours=1, minutes=30),
            total_tokens=10000,
        ),
        active_session(tokens=8000),
    ]
    source = FakeSource(blocks)

    state, first = monitor.tick(make_state(), source, NOW)
    assert state.plan == "custom_max"
    assert state.token_limit == 10000
    assert first.metrics.token_limit == 10000
    assert first.metrics.tokens_left == 2000
    assert first.metrics.show_switch_notification is True

    state, second = monitor.tick(state, source, NOW)
    assert state.token_limit == 10000
    assert second.metrics.show_switch_notification is False


def test_tick_reports_exceeded_limit():
    _, result = monitor.tick(
        make_state(plan="max5", token_limit=35000),
        FakeSource([active_session(tokens=40000)]),
        NOW,
    )
    assert result.metrics.limit_exceeded
    assert result.metrics.tokens_left == -5000
    assert result.metrics.predicted_end_time == result.metrics.reset_time


def test_tick_naive_now_with_configured_timezone():
    naive_now = datetime(2024, 1, 1, 10, 30)
    source = FakeSource(
        [
            monitor.UsageBlock(
                start_time=naive_now - timedelta(minutes=30), is_active=True, total_tokens=3000
            )
        ]
    )
    _, result = monitor.tick(make_state(timezone="UTC"), source, naive_now)

    assert result.metrics.reset_time == datetime(2024, 1, 1, 14, 0)
    assert result.metrics.predicted_end_time == naive_now + timedelta(minutes=80)
    assert result.metrics.time_since_reset == pytest.approx(90)


def test_tick_mixed_offset_timestamps_from_ccusage():
    data = {
        "blocks": [
            {
                "startTime": "2024-01-01T08:30:00",
                "actualEndTime": "2024-01-01T10:00:00",
                "totalTokens": 900,
            },
            {"startTime": "2024-01-01T10:00:00Z", "isActive": True, "totalTokens": 3000},
        ]
    }
    source = FakeSource(monitor.parse_snapshot(data))
    _, result = monitor.tick(make_state(), source, NOW)

    assert not result.skipped
    # 30 of the closed block's 90 minutes fall inside the last hour
    assert result.metrics.burn_rate == pytest.approx((300 + 3000) / 60)


def test_tick_defaults_now_to_block_clock():
    start = datetime.now(timezone.utc) - timedelta(minutes=10)
    source = FakeSource([monitor.UsageBlock(start_time=start, is_active=True, total_tokens=100)])
    _, result = monitor.tick(make_state(), source)

    assert result.metrics.current_time.tzinfo is timezone.utc
    assert result.metrics.current_time >= start


def test_resolve_initial_limit_custom_max():
    source = FakeSource([monitor.UsageBlock(total_tokens=22000), active_session()])
    assert monitor.resolve_initial_limit("custom_max", source) == 22000


def test_resolve_initial_limit_custom_max_fetch_failure(capsys):
    assert monitor.resolve_initial_limit("custom_max", FailingSource()) == 7000
    assert "pro limit" in capsys.readouterr().out


def test_resolve_initial_limit_fixed_plan_skips_fetch():
    source = FakeSource([])
    assert monitor.resolve_initial_limit("max20", source) == 140000
    assert source.calls == 0
