"""Client for the historical GPS range API used by backdated replay."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from config import HISTORY_API_URL
from core.exceptions import TelemetryUnavailableError
from core.http.session import get_session
from core.retry import HTTP_RETRY_EXCEPTIONS, retry_async

logger = logging.getLogger(__name__)


@retry_async(max_retries=3, retry_delay=2.0)
async def _post_range(payload: dict[str, Any]) -> Any:
    session = await get_session()
    async with session.post(HISTORY_API_URL, json=payload) as response:
        response.raise_for_status()
        return await response.json()


async def fetch_history(
    imei: str,
    time_from: datetime,
    time_to: datetime,
) -> list[dict[str, Any]]:
    """
    Fetch raw fixes recorded for ``imei`` between ``time_from`` and ``time_to``.

    Returns:
        Raw fix dicts as sent by the device feed (not yet validated).

    Raises:
        TelemetryUnavailableError: The API is unreachable after retries or
            returned a malformed body.
    """
    payload = {
        "imei": imei,
        "timeFrom": time_from.isoformat(),
        "timeTo": time_to.isoformat(),
    }
    try:
        body = await _post_range(payload)
    except (*HTTP_RETRY_EXCEPTIONS, ValueError) as e:
        msg = f"History API request failed for {imei}"
        raise TelemetryUnavailableError(msg, {"error": str(e)}) from e

    data = body.get("data") if isinstance(body, dict) else None
    if not isinstance(data, list):
        msg = "History API returned no data array"
        raise TelemetryUnavailableError(msg, {"imei": imei})

    logger.info(
        "Fetched %d historical fixes for %s between %s and %s",
        len(data),
        imei,
        payload["timeFrom"],
        payload["timeTo"],
    )
    return data
