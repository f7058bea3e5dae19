import logging
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Callable
import httpx
from app.errors import TimeSyncError

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def _server_instant(response: httpx.Response) -> datetime:
    try:
        return datetime.fromtimestamp(response.json()["now"] / 1000, tz=timezone.utc)
    except (ValueError, KeyError, TypeError):
        pass
    # Any plain HTTP server still tells us the time, to the second
    date_header = response.headers.get("date")
    if not date_header:
        raise TimeSyncError("Time source returned neither a timestamp nor a Date header")
    try:
        return parsedate_to_datetime(date_header).astimezone(timezone.utc)
    except (TypeError, ValueError) as e:
        raise TimeSyncError(f"Unparseable Date header: {date_header!r}") from e

async def measure_offset(client: httpx.AsyncClient, url: str, clock: Clock = utcnow) -> timedelta:
    """Offset to add to the local clock to match the server, compensating for half the round trip.

    Raises TimeSyncError on any failure; retrying is the caller's call.
    """
    started = clock()
    try:
        response = await client.get(url)
        response.raise_for_status()
    except httpx.HTTPError as e:
        raise TimeSyncError(f"Time sync against {url} failed: {e}") from e
    finished = clock()

    server_now = _server_instant(response)
    local_at_server = finished - (finished - started) / 2
    offset = server_now - local_at_server
    logger.debug("Clock offset %s (round trip %s)", offset, finished - started)
    return offset
