#!/usr/bin/env python3

import argparse
import json
import os
import subprocess
import sys
import time
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from datetime import time as dt_time
from typing import Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.progress import BarColumn, Progress, TextColumn
from rich.prompt import Confirm, IntPrompt, Prompt
from rich.text import Text

# ANSI color codes for plain output
COLOR_GREEN = "\033[92m"
COLOR_RED = "\033[91m"
COLOR_RESET = "\033[0m"
COLOR_CYAN = "\033[96m"
COLOR_BLUE = "\033[94m"
COLOR_YELLOW = "\033[93m"
COLOR_WHITE = "\033[97m"
COLOR_GRAY = "\033[90m"

PLANS = ("pro", "max5", "max20", "custom_max")
PLAN_LIMITS = {"pro": 7000, "max5": 35000, "max20": 140000}
DEFAULT_TOKEN_LIMIT = PLAN_LIMITS["pro"]
PLAN_DESCRIPTIONS = {
    "pro": "Pro (7,000 tokens)",
    "max5": "Max5 (35,000 tokens)",
    "max20": "Max20 (140,000 tokens)",
    "custom_max": "Custom Max (auto-detect from usage)",
}

DEFAULT_RESET_HOURS = (4, 9, 14, 18, 23)
SESSION_DURATION_MINUTES = 300
POLL_INTERVAL_SECONDS = 3
# 120 samples = 6 minutes at 3-second intervals
BURN_RATE_HISTORY_SIZE = 120
GRAPH_MAX_RATE = 400
GRAPH_BARS = "▁▂▃▄▅▆▇█"

VELOCITY_INDICATORS = {
    "slow": "🐌",
    "normal": "➡️",
    "fast": "🚀",
    "very_fast": "⚡",
}

FETCH_FAILED_MESSAGE = "Failed to get usage data"
NO_ACTIVE_SESSION_MESSAGE = "No active session found"


class DataSourceError(Exception):
    """Raised when a usage snapshot cannot be fetched or understood."""


def parse_timestamp(value) -> datetime:
    """Parse an ISO-8601 timestamp as emitted by ccusage (``Z`` suffix allowed)."""
    if not isinstance(value, str):
        raise ValueError(f"expected an ISO timestamp string, got {value!r}")
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    # ccusage reports UTC; timestamps without an offset are read the same way
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class UsageBlock:
    """One recorded or currently open usage session."""

    total_tokens: int = 0
    start_time: datetime | None = None
    actual_end_time: datetime | None = None
    is_gap: bool = False
    is_active: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "UsageBlock":
        """Build a block from a ``ccusage blocks --json`` entry."""
        start = data.get("startTime")
        end = data.get("actualEndTime")
        return cls(
            total_tokens=int(data.get("totalTokens") or 0),
            start_time=parse_timestamp(start) if start else None,
            actual_end_time=parse_timestamp(end) if end else None,
            is_gap=bool(data.get("isGap", False)),
            is_active=bool(data.get("isActive", False)),
        )

    def effective_end(self, now: datetime) -> datetime:
        """Return when the block stops counting: now if open, else its end time.

        Closed blocks without a recorded end are treated as still open.
        """
        if self.is_active or self.actual_end_time is None:
            return now
        return self.actual_end_time


def parse_snapshot(data) -> list[UsageBlock]:
    """Turn decoded ccusage JSON into a list of blocks.

    Raises ``DataSourceError`` when the ``blocks`` list is missing or any
    block carries a malformed field.
    """
    if not isinstance(data, dict) or not isinstance(data.get("blocks"), list):
        raise DataSourceError("usage data has no 'blocks' list")
    try:
        return [UsageBlock.from_dict(block) for block in data["blocks"]]
    except (AttributeError, TypeError, ValueError) as e:
        raise DataSourceError(f"Invalid usage block: {e}") from e


class UsageDataSource(Protocol):
    """Anything that can hand the monitor a fresh snapshot of blocks."""

    def fetch(self) -> list[UsageBlock]: ...


def run_ccusage(command=("ccusage", "blocks", "--json")) -> dict:
    """Execute ccusage blocks --json command and return parsed JSON data."""
    try:
        result = subprocess.run(list(command), capture_output=True, text=True, check=True)
    except subprocess.CalledProcessError as e:
        raise DataSourceError(f"Error running ccusage: {e}") from e
    except FileNotFoundError as e:
        raise DataSourceError(
            "ccusage command not found, install it with 'npm install -g ccusage'"
        ) from e
    except OSError as e:
        raise DataSourceError(f"Unable to start ccusage: {e}") from e
    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise DataSourceError(f"Error parsing JSON: {e}") from e


class CcusageDataSource:
    """Usage data source backed by the ``ccusage`` command line tool."""

    def __init__(self, command=("ccusage", "blocks", "--json")):
        self.command = tuple(command)

    def fetch(self) -> list[UsageBlock]:
        return parse_snapshot(run_ccusage(self.command))


def resolve_timezone(tz_name: str | None) -> ZoneInfo | None:
    """Return a ``ZoneInfo`` for ``tz_name``.

    ``None`` stands for the system local time. Unknown names print a warning
    and fall back to local time as well.
    """
    if not tz_name:
        return None
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        print(f"Warning: Unknown timezone '{tz_name}', using system timezone")
        return None


def calculate_hourly_burn_rate(blocks, current_time):
    """Calculate burn rate based on all sessions in the last hour."""
    if not blocks:
        return 0

    one_hour_ago = current_time - timedelta(hours=1)
    total_tokens = 0

    for block in blocks:
        if block.start_time is None or block.is_gap:
            continue

        start_time = block.start_time
        session_actual_end = block.effective_end(current_time)

        # Session ended before the last hour
        if session_actual_end < one_hour_ago:
            continue

        session_start_in_hour = max(start_time, one_hour_ago)
        session_end_in_hour = min(session_actual_end, current_time)

        if session_end_in_hour <= session_start_in_hour:
            continue

        total_session_duration = (session_actual_end - start_time).total_seconds() / 60
        hour_duration = (session_end_in_hour - session_start_in_hour).total_seconds() / 60

        # Tokens are assumed to be spread evenly across the session
        if total_session_duration > 0:
            total_tokens += block.total_tokens * (hour_duration / total_session_duration)

    # Return tokens per minute
    return total_tokens / 60 if total_tokens > 0 else 0


def get_token_limit(plan, blocks=None):
    """Get token limit based on plan type."""
    if plan == "custom_max" and blocks:
        # Highest token count among finished sessions
        max_tokens = 0
        for block in blocks:
            if not block.is_gap and not block.is_active:
                max_tokens = max(max_tokens, block.total_tokens)
        return max_tokens if max_tokens > 0 else DEFAULT_TOKEN_LIMIT

    return PLAN_LIMITS.get(plan, DEFAULT_TOKEN_LIMIT)


def get_next_reset_time(current_time, custom_reset_hour=None, timezone_str=None):
    """Calculate next token reset time based on fixed 5-hour intervals.
    Default reset times in the target timezone: 04:00, 09:00, 14:00, 18:00, 23:00
    Or use custom reset hour if provided.

    The target timezone is ``timezone_str`` or the system local time. A naive
    ``current_time`` is read as wall-clock time in the target timezone and a
    naive result is returned; an aware one is converted there and the result
    converted back.
    """
    target_tz = resolve_timezone(timezone_str)

    if current_time.tzinfo is None:
        local_time = current_time.replace(tzinfo=target_tz)
    else:
        local_time = current_time.astimezone(target_tz)

    if custom_reset_hour is not None:
        reset_hours = [custom_reset_hour]
    else:
        reset_hours = list(DEFAULT_RESET_HOURS)

    next_reset_hour = None
    for hour in reset_hours:
        # An exact hour boundary still counts as pending
        if local_time.hour < hour or (local_time.hour == hour and local_time.minute == 0):
            next_reset_hour = hour
            break

    next_reset_date = local_time.date()
    if next_reset_hour is None:
        next_reset_hour = reset_hours[0]
        next_reset_date += timedelta(days=1)

    if target_tz is None and current_time.tzinfo is not None:
        # System local time: let astimezone() pick the offset valid on the reset date
        next_reset = datetime.combine(next_reset_date, dt_time(next_reset_hour)).astimezone()
    else:
        next_reset = datetime.combine(
            next_reset_date, dt_time(next_reset_hour), tzinfo=local_time.tzinfo
        )

    if current_time.tzinfo is not None:
        next_reset = next_reset.astimezone(current_time.tzinfo)
    else:
        # Naive in, naive out: wall-clock time in the target timezone
        next_reset = next_reset.replace(tzinfo=None)

    return next_reset


def predict_depletion_time(current_time, burn_rate, tokens_left, reset_time):
    """Return when tokens run out, or the reset time if that comes first."""
    if burn_rate <= 0 or tokens_left <= 0:
        return reset_time

    predicted = current_time + timedelta(minutes=tokens_left / burn_rate)
    if predicted <= current_time or predicted > reset_time:
        return reset_time
    return predicted


def get_velocity_category(burn_rate):
    """Bucket a burn rate (tokens/min) into a named speed."""
    if burn_rate < 50:
        return "slow"
    if burn_rate < 150:
        return "normal"
    if burn_rate < 300:
        return "fast"
    return "very_fast"


def get_velocity_indicator(burn_rate):
    """Get velocity emoji based on burn rate."""
    return VELOCITY_INDICATORS[get_velocity_category(burn_rate)]


@dataclass(frozen=True)
class MonitorState:
    """Loop state handed from one polling cycle to the next."""

    plan: str
    token_limit: int
    custom_reset_hour: int | None = None
    timezone: str | None = None
    switched_to_custom_max: bool = False
    switch_notification_shown: bool = False
    burn_rate_history: tuple[float, ...] = ()


@dataclass(frozen=True)
class DashboardMetrics:
    """Everything the presenters need to draw one frame."""

    plan: str
    tokens_used: int
    token_limit: int
    tokens_left: int
    usage_percentage: float
    burn_rate: float
    velocity_category: str
    reset_time: datetime
    predicted_end_time: datetime
    current_time: datetime
    time_since_reset: float
    show_switch_notification: bool = False
    burn_rate_history: tuple[float, ...] = ()

    @property
    def limit_exceeded(self) -> bool:
        return self.tokens_used > self.token_limit

    @property
    def runs_out_before_reset(self) -> bool:
        return self.predicted_end_time < self.reset_time


@dataclass(frozen=True)
class TickResult:
    """Outcome of one polling cycle: metrics to render or a reason to skip."""

    metrics: DashboardMetrics | None = None
    message: str | None = None
    detail: str | None = None

    @property
    def skipped(self) -> bool:
        return self.metrics is None


def find_active_block(blocks):
    """Return the active block from a list of blocks."""
    for block in blocks:
        if block.is_active:
            return block
    return None


def update_switch_state(
    tokens_used: int, state: MonitorState, blocks
) -> tuple[MonitorState, bool]:
    """Raise the limit once usage outgrows the pro plan.

    Returns the new state and whether the switch notification should be shown
    on this cycle. The limit is only ever raised.
    """
    if state.plan == "pro" and tokens_used > state.token_limit:
        new_limit = get_token_limit("custom_max", blocks)
        if new_limit > state.token_limit:
            state = replace(
                state,
                plan="custom_max",
                token_limit=new_limit,
                switched_to_custom_max=True,
            )

    show = state.switched_to_custom_max and not state.switch_notification_shown
    if show:
        state = replace(state, switch_notification_shown=True)

    return state, show


def record_burn_rate(history, burn_rate):
    """Append a sample and keep only the newest ``BURN_RATE_HISTORY_SIZE``."""
    return (tuple(history) + (burn_rate,))[-BURN_RATE_HISTORY_SIZE:]


def current_time_for(block):
    """Return "now" in the same kind of clock the block timestamps use."""
    if block.start_time is not None:
        return datetime.now(block.start_time.tzinfo)
    return datetime.now().astimezone()


def collect_session_stats(
    state: MonitorState, blocks, now: datetime | None = None
) -> tuple[MonitorState, DashboardMetrics | None]:
    """Return the updated state and metrics for the active session."""
    active_block = find_active_block(blocks)
    if active_block is None:
        return state, None

    tokens_used = active_block.total_tokens
    state, show_switch_notification = update_switch_state(tokens_used, state, blocks)

    current_time = now if now is not None else current_time_for(active_block)

    burn_rate = calculate_hourly_burn_rate(blocks, current_time)
    reset_time = get_next_reset_time(current_time, state.custom_reset_hour, state.timezone)
    minutes_to_reset = (reset_time - current_time).total_seconds() / 60

    token_limit = state.token_limit
    tokens_left = token_limit - tokens_used
    predicted_end_time = predict_depletion_time(current_time, burn_rate, tokens_left, reset_time)

    state = replace(state, burn_rate_history=record_burn_rate(state.burn_rate_history, burn_rate))

    metrics = DashboardMetrics(
        plan=state.plan,
        tokens_used=tokens_used,
        token_limit=token_limit,
        tokens_left=tokens_left,
        usage_percentage=tokens_used / token_limit * 100 if token_limit > 0 else 0,
        burn_rate=burn_rate,
        velocity_category=get_velocity_category(burn_rate),
        reset_time=reset_time,
        predicted_end_time=predicted_end_time,
        current_time=current_time,
        time_since_reset=max(0, SESSION_DURATION_MINUTES - minutes_to_reset),
        show_switch_notification=show_switch_notification,
        burn_rate_history=state.burn_rate_history,
    )
    return state, metrics


def tick(
    state: MonitorState, source: UsageDataSource, now: datetime | None = None
) -> tuple[MonitorState, TickResult]:
    """Run one polling cycle against ``source``."""
    try:
        blocks = source.fetch()
    except DataSourceError as e:
        return state, TickResult(message=FETCH_FAILED_MESSAGE, detail=str(e))

    state, metrics = collect_session_stats(state, blocks, now)
    if metrics is None:
        return state, TickResult(message=NO_ACTIVE_SESSION_MESSAGE)
    return state, TickResult(metrics=metrics)


def resolve_initial_limit(plan, source: UsageDataSource):
    """Return the starting limit, fetching history for ``custom_max``."""
    if plan != "custom_max":
        return get_token_limit(plan)
    try:
        blocks = source.fetch()
    except DataSourceError as e:
        print(f"Warning: {e}; starting with the pro limit")
        return get_token_limit("pro")
    return get_token_limit(plan, blocks)


def format_time(minutes):
    """Format minutes into human-readable time (e.g., '3h 45m')."""
    if minutes < 60:
        return f"{int(minutes)}m"
    hours = int(minutes // 60)
    mins = int(minutes % 60)
    if mins == 0:
        return f"{hours}h"
    return f"{hours}h {mins}m"


def format_clock(moment, timezone_str=None, fmt="%H:%M"):
    """Format a timestamp as wall-clock time in the display timezone."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(resolve_timezone(timezone_str))
    return moment.strftime(fmt)


def timezone_label(timezone_str=None):
    """Return the name shown for the display timezone."""
    tz = resolve_timezone(timezone_str)
    if tz is not None:
        return tz.key
    return f"System local time ({datetime.now().astimezone().tzname()})"


def create_token_progress_bar(percentage, width=50, plain=False):
    """Return a token usage progress bar."""
    if plain:
        filled = min(width, int(width * percentage / 100))
        green_bar = "█" * filled
        red_bar = "░" * (width - filled)
        return (
            f"🟢 [{COLOR_GREEN}{green_bar}{COLOR_RED}{red_bar}{COLOR_RESET}]" f" {percentage:.1f}%"
        )
    progress = Progress(
        BarColumn(bar_width=width, complete_style="bright_green"),
        TextColumn("{task.percentage:>5.1f}%"),
        expand=False,
    )
    progress.add_task("", total=100, completed=min(100, int(percentage)))
    return progress


def create_time_progress_bar(elapsed_minutes, total_minutes, width=50, plain=False):
    """Create a time progress bar showing time until reset."""
    percentage = 0 if total_minutes <= 0 else min(100, (elapsed_minutes / total_minutes) * 100)
    remaining_time = format_time(max(0, total_minutes - elapsed_minutes))
    if plain:
        filled = int(width * percentage / 100)
        blue_bar = "█" * filled
        red_bar = "░" * (width - filled)
        return f"⏰ [{COLOR_BLUE}{blue_bar}{COLOR_RED}{red_bar}{COLOR_RESET}]" f" {remaining_time}"

    progress = Progress(
        BarColumn(bar_width=width, complete_style="bright_blue"),
        TextColumn(remaining_time),
        expand=False,
    )
    progress.add_task("", total=total_minutes, completed=elapsed_minutes)
    return progress


def _graph_color(rate):
    if rate > 200:
        return ("red", COLOR_RED)
    if rate > 100:
        return ("yellow", COLOR_YELLOW)
    return ("green", COLOR_GREEN)


def create_mini_graph(history, width=40, plain=False):
    """Return a sparkline of recent burn rates, newest sample on the right.

    The scale is fixed: a full bar means ``GRAPH_MAX_RATE`` tokens/min.
    """
    samples = list(history)[-width:] if width > 0 else []
    padding = " " * (width - len(samples))

    if plain:
        graph = padding
        for rate in samples:
            level = int(min(rate / GRAPH_MAX_RATE, 1) * (len(GRAPH_BARS) - 1))
            graph += f"{_graph_color(rate)[1]}{GRAPH_BARS[level]}{COLOR_RESET}"
        return graph

    text = Text(padding)
    for rate in samples:
        level = int(min(rate / GRAPH_MAX_RATE, 1) * (len(GRAPH_BARS) - 1))
        text.append(GRAPH_BARS[level], style=_graph_color(rate)[0])
    return text


def get_status_icon(metrics: DashboardMetrics) -> str:
    """Return the headline status emoji for the current frame."""
    if metrics.limit_exceeded:
        return "🚨"
    if metrics.runs_out_before_reset:
        return "⚠️"
    return "✅"


def print_header():
    """Print the stylized header with sparkles."""
    sparkles = f"{COLOR_CYAN}✦ ✧ ✦ ✧ {COLOR_RESET}"

    print(f"{sparkles}{COLOR_CYAN}CLAUDE TOKEN MONITOR{COLOR_RESET} {sparkles}")
    print(f"{COLOR_BLUE}{'=' * 60}{COLOR_RESET}")
    print()


def display_plain_report(metrics: DashboardMetrics, timezone_str=None):
    """Print a plain text status update using collected metrics."""
    print_header()

    print(
        f"📊 {COLOR_WHITE}Token Usage:{COLOR_RESET}    "
        f"{create_token_progress_bar(metrics.usage_percentage, plain=True)}"
    )
    print()

    time_bar = create_time_progress_bar(
        metrics.time_since_reset, SESSION_DURATION_MINUTES, plain=True
    )
    print(f"⏳ {COLOR_WHITE}Time to Reset:{COLOR_RESET}  {time_bar}")
    print()

    print(
        f"🎯 {COLOR_WHITE}Tokens:{COLOR_RESET}         "
        f"{COLOR_WHITE}{metrics.tokens_used:,}{COLOR_RESET} / "
        f"{COLOR_GRAY}~{metrics.token_limit:,}{COLOR_RESET}"
        f" ({COLOR_CYAN}{metrics.tokens_left:,} left{COLOR_RESET})"
    )
    print(
        f"🔥 {COLOR_WHITE}Burn Rate:{COLOR_RESET}      "
        f"{COLOR_YELLOW}{metrics.burn_rate:.1f}{COLOR_RESET} {COLOR_GRAY}tokens/min{COLOR_RESET} "
        f"{get_velocity_indicator(metrics.burn_rate)}"
    )
    print(
        f"📈 {COLOR_WHITE}Burn History:{COLOR_RESET}   "
        f"{create_mini_graph(metrics.burn_rate_history, plain=True)}"
    )
    print()

    print(
        f"🏁 {COLOR_WHITE}Predicted End:{COLOR_RESET} "
        f"{format_clock(metrics.predicted_end_time, timezone_str)}"
    )
    print(
        f"🔄 {COLOR_WHITE}Token Reset:{COLOR_RESET}   "
        f"{format_clock(metrics.reset_time, timezone_str)}"
    )
    print(f"🕒 {COLOR_WHITE}Time Zone:{COLOR_RESET}  {timezone_label(timezone_str)}")
    print()

    if metrics.show_switch_notification:
        print(
            f"🔄 {COLOR_YELLOW}Tokens exceeded Pro limit - switched to "
            f"custom_max ({metrics.token_limit:,}){COLOR_RESET}"
        )
        print()
    if metrics.limit_exceeded:
        print(
            f"🚨 {COLOR_RED}TOKENS EXCEEDED MAX LIMIT! "
            f"({metrics.tokens_used:,} > {metrics.token_limit:,}){COLOR_RESET}"
        )
        print()
    elif metrics.runs_out_before_reset:
        print(f"⚠️  {COLOR_RED}Tokens will run out BEFORE reset!{COLOR_RESET}")
        print()

    current_time_str = datetime.now().strftime("%H:%M:%S")
    print(
        f"{get_status_icon(metrics)} {COLOR_GRAY}{current_time_str}{COLOR_RESET} | "
        f"{COLOR_GRAY}Ctrl+C to exit{COLOR_RESET}"
    )

    print("\033[J", end="", flush=True)


def build_rich_panel(metrics: DashboardMetrics, timezone_str=None):
    """Return a rich Panel object for the current metrics."""
    predicted_end_str = format_clock(metrics.predicted_end_time, timezone_str)
    reset_time_str = format_clock(metrics.reset_time, timezone_str)

    body = [Text(f"{get_status_icon(metrics)} CLAUDE TOKEN MONITOR", style="bold cyan")]
    body.append(Text(f"Plan: {metrics.plan}", style="dim"))

    body.append(Text("📊 Token Usage:", style="bold"))
    body.append(create_token_progress_bar(metrics.usage_percentage))

    body.append(Text("⏳ Time to Reset:", style="bold"))
    body.append(create_time_progress_bar(metrics.time_since_reset, SESSION_DURATION_MINUTES))

    body.append(
        Text(
            f"🎯 Tokens: {metrics.tokens_used:,} / ~{metrics.token_limit:,} "
            f"({metrics.tokens_left:,} left)",
            style="white",
        )
    )
    body.append(
        Text(
            f"🔥 Burn Rate: {metrics.burn_rate:.1f} tokens/min "
            f"{get_velocity_indicator(metrics.burn_rate)}",
            style="yellow",
        )
    )
    body.append(Text.assemble("📈 ", create_mini_graph(metrics.burn_rate_history)))
    body.append(Text(""))

    body.append(Text(f"🏁 Predicted End: {predicted_end_str}"))
    body.append(Text(f"🔄 Token Reset:   {reset_time_str}"))
    body.append(Text(f"🕒 Time Zone:  {timezone_label(timezone_str)}"))

    if metrics.show_switch_notification:
        body.append(
            Text(
                "🔄 Tokens exceeded Pro limit - switched to "
                f"custom_max ({metrics.token_limit:,})",
                style="yellow",
            )
        )
    if metrics.limit_exceeded:
        body.append(
            Text(
                f"🚨 TOKENS EXCEEDED MAX LIMIT! ({metrics.tokens_used:,} > {metrics.token_limit:,})",
                style="red",
            )
        )
    elif metrics.runs_out_before_reset:
        body.append(Text("⚠️  Tokens will run out BEFORE reset!", style="red"))

    current_time_str = datetime.now().strftime("%H:%M:%S")
    body.append(Text(f"⏰ {current_time_str} | Ctrl+C to exit", style="dim"))

    return Panel(Group(*body))


def build_skip_message(result: TickResult):
    """Return a short renderable explaining why this cycle was skipped."""
    text = Text(result.message or "")
    if result.detail:
        text.append(f"\n{result.detail}", style="dim")
    return text


def clear_screen():
    os.system("clear" if os.name == "posix" else "cls")


def run_plain_once(state: MonitorState, source: UsageDataSource, now=None) -> MonitorState:
    """Render a single plain-text update and return the new state."""
    state, result = tick(state, source, now)
    if result.skipped:
        print(result.message)
        if result.detail:
            print(f"{COLOR_GRAY}{result.detail}{COLOR_RESET}")
        print("\033[J", end="", flush=True)
        return state

    display_plain_report(result.metrics, state.timezone)
    return state


def run_plain(state: MonitorState, source: UsageDataSource, interval=POLL_INTERVAL_SECONDS):
    """Main monitoring loop using plain text output."""
    try:
        clear_screen()
        print("\033[?25l", end="", flush=True)

        while True:
            print("\033[H", end="", flush=True)
            state = run_plain_once(state, source)
            time.sleep(interval)

    except KeyboardInterrupt:
        print("\033[?25h", end="", flush=True)
        print(f"\n\n{COLOR_CYAN}Monitoring stopped.{COLOR_RESET}")
        clear_screen()
        sys.exit(0)


def run_rich_once(state: MonitorState, source: UsageDataSource, now=None):
    """Run one cycle and return the new state with a renderable for it."""
    state, result = tick(state, source, now)
    if result.skipped:
        return state, build_skip_message(result)
    return state, build_rich_panel(result.metrics, state.timezone)


def run_rich(
    state: MonitorState,
    source: UsageDataSource,
    interval=POLL_INTERVAL_SECONDS,
    console: Console | None = None,
):
    """Monitoring loop using rich output."""
    console = console or Console()
    with Live(console=console, refresh_per_second=4, screen=True) as live:
        try:
            while True:
                state, renderable = run_rich_once(state, source)
                live.update(renderable)
                time.sleep(interval)
        except KeyboardInterrupt:
            pass
    console.print("\nMonitoring stopped.", style="cyan")


def prompt_setup(console: Console) -> tuple[str, int | None]:
    """Ask for the plan and an optional custom reset hour."""
    console.print("\n🚀 Claude Token Monitor Setup\n", style="bold cyan")
    console.print("Select your Claude plan:")
    for idx, plan in enumerate(PLANS, start=1):
        console.print(f"{idx}. {PLAN_DESCRIPTIONS[plan]}")
    console.print()

    choice = Prompt.ask(
        "Enter your choice",
        choices=[str(idx) for idx in range(1, len(PLANS) + 1)],
        console=console,
    )
    plan = PLANS[int(choice) - 1]

    reset_hour = None
    console.print()
    if Confirm.ask("Use custom reset hour?", default=False, console=console):
        while reset_hour is None:
            hour = IntPrompt.ask("Enter reset hour (0-23)", console=console)
            if 0 <= hour <= 23:
                reset_hour = hour
            else:
                console.print("Invalid hour. Please enter a number between 0 and 23.", style="red")

    return plan, reset_hour


def print_startup_summary(plan, reset_hour, timezone_str, console: Console):
    """Echo the chosen configuration before monitoring starts."""
    console.print(f"\n✅ Plan: {plan.upper()}")
    if reset_hour is not None:
        console.print(f"✅ Custom reset hour: {reset_hour}:00")
    else:
        hours = ", ".join(f"{hour:02d}:00" for hour in DEFAULT_RESET_HOURS)
        console.print(f"✅ Default reset schedule: {hours}")
    console.print(f"✅ Timezone: {timezone_label(timezone_str)}")


def reset_hour_type(value):
    """argparse type for an hour of the day."""
    try:
        hour = int(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid hour: {value!r}") from e
    if not 0 <= hour <= 23:
        raise argparse.ArgumentTypeError(f"reset hour must be between 0 and 23, got {hour}")
    return hour


def positive_float(value):
    """argparse type for a strictly positive number of seconds."""
    try:
        number = float(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid number: {value!r}") from e
    if number <= 0:
        raise argparse.ArgumentTypeError(f"interval must be positive, got {value}")
    return number


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Claude Token Monitor - Real-time token usage monitoring"
    )
    parser.add_argument(
        "--plan",
        type=str,
        default="pro",
        choices=list(PLANS),
        help=(
            "Claude plan type (default: pro). "
            'Use "custom_max" to auto-detect from highest previous block'
        ),
    )
    parser.add_argument(
        "--reset-hour",
        type=reset_hour_type,
        help="Use a single daily reset at this hour (0-23) instead of the default schedule",
    )
    parser.add_argument(
        "--timezone",
        type=str,
        help="Timezone for reset times. Defaults to the system timezone.",
    )
    parser.add_argument(
        "--plain",
        action="store_true",
        help="Disable rich output and use simple text",
    )
    parser.add_argument(
        "--interval",
        type=positive_float,
        default=POLL_INTERVAL_SECONDS,
        help=f"Seconds between refreshes (default: {POLL_INTERVAL_SECONDS})",
    )
    parser.add_argument(
        "--setup",
        action="store_true",
        help="Choose the plan and reset hour through an interactive menu",
    )
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    console = Console()

    if args.timezone and resolve_timezone(args.timezone) is None:
        args.timezone = None

    if args.setup:
        args.plan, args.reset_hour = prompt_setup(console)
        print_startup_summary(args.plan, args.reset_hour, args.timezone, console)
        console.print("\nStarting monitor in 3 seconds...\n")
        time.sleep(3)

    source = CcusageDataSource()
    state = MonitorState(
        plan=args.plan,
        token_limit=resolve_initial_limit(args.plan, source),
        custom_reset_hour=args.reset_hour,
        timezone=args.timezone,
    )

    if args.plain:
        run_plain(state, source, args.interval)
    else:
        run_rich(state, source, args.interval, console)


if __name__ == "__main__":
    main()
