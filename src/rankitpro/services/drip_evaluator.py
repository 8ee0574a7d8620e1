"""Due-stage evaluator: decides which drip stage, if any, should fire now.

Everything here is a pure function of (state, config, anchor, now), so the
scheduler can re-evaluate every row on every tick without side effects.
State and config are read by attribute, so ORM rows and plain namespaces
both work.
"""

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from rankitpro.domain.enums import DripStage, DripStatus

S = DripStage

STAGE_ORDER: tuple[DripStage, ...] = (
    S.INITIAL,
    S.FIRST_FOLLOW_UP,
    S.SECOND_FOLLOW_UP,
    S.FINAL_FOLLOW_UP,
)

# stage -> (sent flag column, sent timestamp column) on ReviewRequestStatus
SENT_FIELDS: dict[DripStage, tuple[str, str]] = {
    S.INITIAL: ("initial_request_sent", "initial_request_sent_at"),
    S.FIRST_FOLLOW_UP: ("first_follow_up_sent", "first_follow_up_sent_at"),
    S.SECOND_FOLLOW_UP: ("second_follow_up_sent", "second_follow_up_sent_at"),
    S.FINAL_FOLLOW_UP: ("final_follow_up_sent", "final_follow_up_sent_at"),
}

# stage -> enable flag on ReviewFollowUpSettings (the initial request is always on)
ENABLE_FIELDS: dict[DripStage, str | None] = {
    S.INITIAL: None,
    S.FIRST_FOLLOW_UP: "enable_first_follow_up",
    S.SECOND_FOLLOW_UP: "enable_second_follow_up",
    S.FINAL_FOLLOW_UP: "enable_final_follow_up",
}

# stage -> delay in days; initial is measured from the anchor, the rest from the previous send
DELAY_FIELDS: dict[DripStage, str] = {
    S.INITIAL: "initial_delay",
    S.FIRST_FOLLOW_UP: "first_follow_up_delay",
    S.SECOND_FOLLOW_UP: "second_follow_up_delay",
    S.FINAL_FOLLOW_UP: "final_follow_up_delay",
}

TERMINAL_STATUSES: set[DripStatus] = {DripStatus.COMPLETED, DripStatus.UNSUBSCRIBED}
ACTIVE_STATUSES: set[DripStatus] = {DripStatus.PENDING, DripStatus.IN_PROGRESS}

DEFAULT_TIME_ZONE = "America/New_York"

# Plain timing: only send within this many hours of the preferred send time
SEND_WINDOW_HOURS = 2

# Smart timing: quiet hours when avoid_late_night is set
LATE_NIGHT_AFTER_HOUR = 21
EARLY_MORNING_BEFORE_HOUR = 7


class DripIntegrityError(Exception):
    """Raised when a drip row has a sent stage whose predecessor is not sent."""

    def __init__(self, state_id: str | None, stage: DripStage, reason: str):
        self.state_id = state_id
        self.stage = stage
        self.reason = reason
        super().__init__(f"Drip state {state_id} is inconsistent at {stage.value}: {reason}")


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def as_utc(value: datetime | None) -> datetime | None:
    """Return an aware UTC datetime. Naive values are assumed to be UTC (SQLite)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def drip_status(state) -> DripStatus:
    status = state.status
    if isinstance(status, str):
        status = DripStatus(status)
    return status


def is_stage_sent(state, stage: DripStage) -> bool:
    return bool(getattr(state, SENT_FIELDS[stage][0], False))


def stage_sent_at(state, stage: DripStage) -> datetime | None:
    return as_utc(getattr(state, SENT_FIELDS[stage][1], None))


def is_stage_enabled(config, stage: DripStage) -> bool:
    field = ENABLE_FIELDS[stage]
    if field is None:
        return True
    return bool(getattr(config, field, False))


def stage_delay(config, stage: DripStage) -> timedelta:
    return timedelta(days=int(getattr(config, DELAY_FIELDS[stage]) or 0))


def retry_delay(failed_attempts: int, base_minutes: int = 15, max_minutes: int = 360) -> timedelta:
    """Exponential backoff after consecutive delivery failures, capped."""
    if failed_attempts <= 0:
        return timedelta(0)
    minutes = base_minutes * (2 ** (failed_attempts - 1))
    return timedelta(minutes=min(minutes, max_minutes))


def check_stage_order(state) -> None:
    """Raise DripIntegrityError if stages were not marked sent in order."""
    state_id = getattr(state, "id", None)
    previous: DripStage | None = None
    for stage in STAGE_ORDER:
        sent = is_stage_sent(state, stage)
        if sent and stage_sent_at(state, stage) is None:
            raise DripIntegrityError(state_id, stage, "marked sent without a timestamp")
        if sent and previous is not None:
            if not is_stage_sent(state, previous):
                raise DripIntegrityError(
                    state_id, stage, f"sent before {previous.value}"
                )
            if stage_sent_at(state, stage) < stage_sent_at(state, previous):
                raise DripIntegrityError(
                    state_id, stage, f"sent timestamp precedes {previous.value}"
                )
        previous = stage


# ---------------------------------------------------------------------------
# Timing gates
# ---------------------------------------------------------------------------


def local_time(config, now: datetime) -> datetime:
    """Convert ``now`` into the company's local time zone."""
    tz_name = getattr(config, "time_zone", None) or DEFAULT_TIME_ZONE
    try:
        tz = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        tz = ZoneInfo(DEFAULT_TIME_ZONE)
    return as_utc(now).astimezone(tz)


def parse_send_time(value: str | None) -> tuple[int, int] | None:
    """Parse "HH:MM" into (hour, minute). Returns None for empty values."""
    if not value:
        return None
    hour_str, _, minute_str = value.partition(":")
    hour, minute = int(hour_str), int(minute_str or 0)
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid send time: {value!r}")
    return hour, minute


def _sunday_based_weekday(moment: datetime) -> int:
    # Preferences store 0 = Sunday .. 6 = Saturday
    return (moment.weekday() + 1) % 7


def is_send_allowed(config, now: datetime) -> bool:
    """Return True if the company's timing rules allow a send at ``now``.

    Weekends are blocked unless send_weekends is set. With smart timing the
    preferred days and late-night quiet hours apply; otherwise sends are kept
    within SEND_WINDOW_HOURS of the preferred send time, if one is set.
    """
    local = local_time(config, now)

    if not getattr(config, "send_weekends", False) and local.weekday() >= 5:
        return False

    if getattr(config, "enable_smart_timing", False):
        prefs = getattr(config, "smart_timing_preferences", None) or {}
        preferred_days = prefs.get("preferred_days")
        if prefs.get("prefer_weekdays", True) and preferred_days:
            if _sunday_based_weekday(local) not in preferred_days:
                return False
        if prefs.get("avoid_late_night", True):
            if local.hour < EARLY_MORNING_BEFORE_HOUR or local.hour > LATE_NIGHT_AFTER_HOUR:
                return False
        return True

    preferred = parse_send_time(getattr(config, "preferred_send_time", None))
    if preferred is None:
        return True
    preferred_minutes = preferred[0] * 60 + preferred[1]
    current_minutes = local.hour * 60 + local.minute
    return abs(current_minutes - preferred_minutes) <= SEND_WINDOW_HOURS * 60


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def next_stage(state, config) -> DripStage | None:
    """Return the next stage the drip is waiting on, ignoring time.

    None when the drip is terminal, finished, or blocked by a disabled stage.
    """
    if drip_status(state) in TERMINAL_STATUSES:
        return None
    for stage in STAGE_ORDER:
        if is_stage_sent(state, stage):
            continue
        if not is_stage_enabled(config, stage):
            return None
        return stage
    return None


def stage_due_at(state, config, stage: DripStage, anchor: datetime | None) -> datetime | None:
    """Earliest time ``stage`` may fire: previous send (or anchor) plus its delay."""
    index = STAGE_ORDER.index(stage)
    if index == 0:
        base = as_utc(anchor)
    else:
        base = stage_sent_at(state, STAGE_ORDER[index - 1])
    if base is None:
        return None
    return base + stage_delay(config, stage)


def evaluate_due_stage(
    state,
    config,
    anchor: datetime | None,
    now: datetime,
    retry_base_minutes: int = 15,
    retry_max_minutes: int = 360,
) -> DripStage | None:
    """Return the single stage due to fire at ``now``, or None.

    Stages fire strictly in order: a later stage is never considered until the
    one before it is marked sent. A stage that is due but blocked by timing
    rules or retry backoff returns None and is picked up on a later tick.

    Raises DripIntegrityError if the row's stages are out of order.
    """
    if config is None or not getattr(config, "is_active", False):
        return None
    if drip_status(state) in TERMINAL_STATUSES:
        return None

    check_stage_order(state)

    stage = next_stage(state, config)
    if stage is None:
        return None

    due_at = stage_due_at(state, config, stage, anchor)
    now = as_utc(now)
    if due_at is None or now < due_at:
        return None

    failed_attempts = getattr(state, "failed_attempts", 0) or 0
    last_failed_at = as_utc(getattr(state, "last_failed_at", None))
    if failed_attempts and last_failed_at is not None:
        if now < last_failed_at + retry_delay(failed_attempts, retry_base_minutes, retry_max_minutes):
            return None

    if not is_send_allowed(config, now):
        return None

    return stage
