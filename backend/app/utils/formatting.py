"""Formatting utilities for outbound notifications"""
import logging
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)


def extract_first_name(full_name: Optional[str]) -> str:
    """Return the capitalized first word of a full name ('' when there is none)"""
    if not isinstance(full_name, str):
        return ''
    words = full_name.split()
    if not words:
        return ''
    first = words[0]
    return first[:1].upper() + first[1:].lower()


def resolve_timezone(tz_name: Optional[str], default: str = "UTC") -> ZoneInfo:
    """Look up an IANA timezone, falling back to the default on unknown names"""
    try:
        return ZoneInfo(tz_name or default)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone '{tz_name}', falling back to {default}")
        return ZoneInfo(default)


def format_in_timezone(value: Optional[datetime], tz_name: Optional[str], default: str = "UTC") -> Optional[str]:
    """Render an instant as a long date with a short time in the given timezone

    Example: 2025-08-09 12:00 UTC in America/Sao_Paulo -> 'August 9, 2025 at 9:00 AM'
    """
    if value is None:
        return None
    local = value.astimezone(resolve_timezone(tz_name, default))
    hour = local.hour % 12 or 12
    return f"{local:%B} {local.day}, {local.year} at {hour}:{local:%M} {local:%p}"
