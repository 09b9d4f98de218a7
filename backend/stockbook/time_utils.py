from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Optional


_DATE_ONLY_LENGTH = len("YYYY-MM-DD")


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column stores UTC without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Read an order/arrival timestamp sent by the dashboard.

    Blank input means "no date". A bare calendar day ("2024-03-01") is
    midnight UTC of that day. Offsets ("Z", "+02:00") are folded into UTC.
    Raises ValueError for anything else.
    """
    if value is None or not value.strip():
        return None
    text = value.strip()

    if len(text) == _DATE_ONLY_LENGTH:
        return datetime.combine(date.fromisoformat(text), time.min)

    parsed = datetime.fromisoformat(text[:-1] + "+00:00" if text.endswith("Z") else text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def isoformat_utc(moment: Optional[datetime]) -> Optional[str]:
    """Whole-second 'YYYY-MM-DDTHH:MM:SSZ' for JSON; naive input counts as UTC."""
    if moment is None:
        return None
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment.replace(microsecond=0).isoformat() + "Z"
