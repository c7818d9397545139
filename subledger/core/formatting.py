"""Display helpers shared by the API, the Discord embeds and the admin views.

All functions here are pure: no I/O, no clock reads.
"""

from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from zoneinfo import ZoneInfo

SMALL_AMOUNT_DECIMALS = 8
REGULAR_AMOUNT_DECIMALS = 2
GROUPING_THRESHOLD = Decimal("1000")

DAYS_PER_WEEK = 7
DAYS_PER_MONTH = 30
DAYS_PER_YEAR = 365


def to_decimal(value: object) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")


def format_amount(amount: object, *, grouping: bool = True) -> str:
    value = to_decimal(amount)
    places = SMALL_AMOUNT_DECIMALS if Decimal("0") < abs(value) < Decimal("1") else REGULAR_AMOUNT_DECIMALS
    quantized = value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)

    if grouping and abs(quantized) >= GROUPING_THRESHOLD:
        text = f"{quantized:,f}"
    else:
        text = f"{quantized:f}"

    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if text in {"", "-0"}:
        return "0"
    return text


def _plural(count: int, singular: str) -> str:
    return f"{count} {singular if count == 1 else singular + 's'}"


def format_duration(days: int) -> str:
    if days >= DAYS_PER_YEAR:
        unit_count, remainder, unit = days // DAYS_PER_YEAR, days % DAYS_PER_YEAR, "Year"
    elif days >= DAYS_PER_MONTH:
        unit_count, remainder, unit = days // DAYS_PER_MONTH, days % DAYS_PER_MONTH, "Month"
    elif days >= DAYS_PER_WEEK:
        unit_count, remainder, unit = days // DAYS_PER_WEEK, days % DAYS_PER_WEEK, "Week"
    else:
        return _plural(days, "Day")

    head = _plural(unit_count, unit)
    if remainder == 0:
        return head
    # The remainder always reads "Days", even for a single day.
    return f"{head} {remainder} Days"


def format_local_datetime(value: datetime, *, timezone_name: str) -> str:
    local = value.astimezone(ZoneInfo(timezone_name))
    abbreviation = local.tzname() or timezone_name
    return f"{local:%A, %d %B %Y, %I:%M %p} {abbreviation}"


def format_discord_timestamp(value: datetime, style: str = "F") -> str:
    return f"<t:{int(value.timestamp())}:{style}>"


def format_time_remaining(*, now_utc: datetime, expires_at: datetime) -> str:
    remaining_seconds = max(0, int((expires_at - now_utc).total_seconds()))
    days_left = remaining_seconds // 86400
    hours_left = (remaining_seconds % 86400) // 3600

    if days_left > 0:
        phrase = f"in {_plural(days_left, 'day')}"
        if hours_left > 0:
            phrase += f" and {_plural(hours_left, 'hour')}"
        return f"Your subscription expires {phrase}!"
    if hours_left > 0:
        return f"Your subscription expires in {_plural(hours_left, 'hour')}!"
    return "Your subscription expires very soon!"
