from dataclasses import dataclass
from datetime import datetime, timedelta
from app.config import settings
from app.errors import ConfigError

MILLISECONDS = {
    "month": 30 * 86_400_000,
    "week": 7 * 86_400_000,
    "day": 86_400_000,
    "hour": 3_600_000,
    "minute": 60_000,
    "second": 1000,
}

# Largest first. h24 is covered by d1.
THRESHOLDS = [
    ("m", "month", [12, 11, 10, 9, 8, 7, 6, 5, 4, 3, 2]),
    ("w", "week", [4, 3, 2]),
    ("d", "day", [7, 6, 5, 4, 3, 2, 1]),
    ("h", "hour", [12, 6, 3, 1]),
    ("min", "minute", [30, 15, 5, 1]),
]

NOW_KEY = "now"

@dataclass(frozen=True)
class MilestoneDefinition:
    key: str
    remaining_ms: int
    label: str
    terminal: bool = False

@dataclass(frozen=True)
class TimeLeft:
    days: int
    hours: int
    minutes: int
    seconds: int

def render_label(key: str, title: str) -> str:
    if key == NOW_KEY:
        return f"{title} is available now!"
    for prefix, unit, _ in THRESHOLDS:
        value = key[len(prefix):]
        if key.startswith(prefix) and value.isdigit():
            n = int(value)
            text = f"{n} {unit}{'s' if n > 1 else ''} until {title} release!"
            return f"Only {text}" if unit == "minute" else text
    return f"{title} is coming!"

def build_milestones(title: str) -> tuple[MilestoneDefinition, ...]:
    table = []
    for prefix, unit, values in THRESHOLDS:
        for n in values:
            key = f"{prefix}{n}"
            table.append(MilestoneDefinition(key, n * MILLISECONDS[unit], render_label(key, title)))
    return tuple(table)

def build_now(title: str) -> MilestoneDefinition:
    return MilestoneDefinition(NOW_KEY, 0, render_label(NOW_KEY, title), terminal=True)

MILESTONES = build_milestones(settings.countdown_title)
NOW = build_now(settings.countdown_title)

def remaining(target: datetime, now: datetime, offset: timedelta = timedelta(0)) -> timedelta:
    """Time left until ``target`` on the corrected clock, never negative."""
    diff = target - (now + offset)
    return max(diff, timedelta(0))

def match_milestone(
    left: timedelta,
    tolerance: timedelta,
    table: tuple[MilestoneDefinition, ...] = MILESTONES,
    now_milestone: MilestoneDefinition = NOW,
) -> MilestoneDefinition | None:
    """First table entry strictly within ``tolerance`` of ``left``.

    At or past the target the terminal milestone matches regardless of the table.
    """
    if left <= timedelta(0):
        return now_milestone
    left_ms = left / timedelta(milliseconds=1)
    tolerance_ms = tolerance / timedelta(milliseconds=1)
    for milestone in table:
        if abs(milestone.remaining_ms - left_ms) < tolerance_ms:
            return milestone
    return None

def check_table_spacing(table: tuple[MilestoneDefinition, ...], tolerance: timedelta) -> None:
    """Raise ConfigError if one reading could fall inside two entries' windows."""
    tolerance_ms = tolerance / timedelta(milliseconds=1)
    ordered = sorted(table, key=lambda m: m.remaining_ms)
    for lower, upper in zip(ordered, ordered[1:]):
        if upper.remaining_ms - lower.remaining_ms <= 2 * tolerance_ms:
            raise ConfigError(
                f"Milestones {lower.key} and {upper.key} are closer than twice the tolerance ({tolerance})"
            )

def time_left(left: timedelta) -> TimeLeft:
    ms = max(int(left / timedelta(milliseconds=1)), 0)
    return TimeLeft(
        days=ms // MILLISECONDS["day"],
        hours=(ms % MILLISECONDS["day"]) // MILLISECONDS["hour"],
        minutes=(ms % MILLISECONDS["hour"]) // MILLISECONDS["minute"],
        seconds=(ms % MILLISECONDS["minute"]) // MILLISECONDS["second"],
    )
