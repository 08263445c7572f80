"""Result callbacks to the caller that requested a render."""
from typing import Any, Dict, Optional

import httpx

from sessionreel.utils.logger import logger


async def post_callback(
    url: str,
    payload: Dict[str, Any],
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> bool:
    """
    POST a job result to the caller's callback URL.

    Failures are logged and never raised, so they cannot mask the job result.

    Returns:
        True if the callback was accepted
    """
    status = "success" if payload.get("success") else "failure"
    try:
        async with httpx.AsyncClient(timeout=15.0, transport=transport) as client:
            response = await client.post(url, json=payload)
    except httpx.HTTPError as e:
        logger.error(f"[CALLBACK] POST to {url} failed: {e}")
        return False

    if not response.is_success:
        logger.error(f"[CALLBACK] POST to {url} returned {response.status_code}: {response.text[:500]}")
        return False

    logger.info(f"[CALLBACK] Sent {status} for {payload.get('recording_id')} ({response.status_code})")
    return True
