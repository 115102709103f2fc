"""
Small shared helpers: identifiers, JSON columns, timestamps and retry backoff.
"""

import asyncio
import json
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type, TypeVar

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

T = TypeVar('T')


def generate_id(prefix: str = "") -> str:
    """Generate a unique ID with optional prefix."""
    unique_id = str(uuid.uuid4())[:8]
    return f"{prefix}_{unique_id}" if prefix else unique_id


def to_json(data: Any) -> Optional[str]:
    """Convert a value to a JSON string."""
    if data is None:
        return None
    return json.dumps(data, default=str)


def from_json(json_str: Optional[str]) -> Optional[Any]:
    """Convert a JSON string back to a value."""
    if json_str is None:
        return None
    try:
        return json.loads(json_str)
    except json.JSONDecodeError:
        return None


def now_ms() -> int:
    """Current UTC time in epoch milliseconds."""
    return int(time.time() * 1000)


def ms_to_datetime(timestamp_ms: int) -> datetime:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)


def parse_timestamp_ms(value: Any) -> Optional[int]:
    """
    Normalize a timestamp to epoch milliseconds.

    Accepts epoch milliseconds, datetimes and ISO-8601 strings; naive
    values are taken as UTC.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, datetime):
        dt = value
    else:
        dt = date_parser.isoparse(str(value))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def calculate_backoff_delay(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0
) -> float:
    """
    Calculate exponential backoff delay for retries.

    Args:
        attempt: The current retry attempt (0-indexed).
        base_delay: Base delay in seconds.
        max_delay: Maximum delay in seconds.
        exponential_base: Growth factor per attempt.

    Returns:
        Delay in seconds before the next retry attempt.
    """
    delay = base_delay * (exponential_base ** attempt)
    return min(delay, max_delay)


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args,
    retries: int = 3,
    base_delay: float = 0.2,
    max_delay: float = 5.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    operation: str = "operation",
    **kwargs
) -> T:
    """
    Await ``func`` with exponential backoff on the given exception types.

    The last exception is re-raised once ``retries`` extra attempts are
    used up; callers translate it into their own error type.
    """
    for attempt in range(retries + 1):
        try:
            return await func(*args, **kwargs)
        except retry_on as e:
            if attempt >= retries:
                raise
            delay = calculate_backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                f"{operation} failed (attempt {attempt + 1}/{retries + 1}), "
                f"retrying in {delay:.2f}s: {e}"
            )
            await asyncio.sleep(delay)
    raise RuntimeError("unreachable")
