from __future__ import annotations
import json
import logging
import time
from typing import Dict, Any, Optional

from katana_apr.config import Settings, get_settings
from katana_apr.http import HttpClient

logger = logging.getLogger(__name__)


async def loki_log(
    http: HttpClient,
    level: str,
    message: str,
    labels: Optional[Dict[str, str]] = None,
    extra: Optional[Dict[str, Any]] = None,
    settings: Optional[Settings] = None,
) -> None:
    """
    Push one log line to Loki (`${LOKI_URL}/loki/api/v1/push`). No-op when LOKI_URL is unset.
    """
    settings = settings or get_settings()
    if not settings.LOKI_URL:
        return
    ts_ns = str(int(time.time() * 1_000_000_000))
    stream = labels or {"service": "katana-apr", "env": settings.ENV, "level": level}
    payload = {
        "streams": [
            {
                "stream": stream,
                "values": [
                    [ts_ns, json.dumps({"message": message, **(extra or {})})]
                ],
            }
        ]
    }
    url = f"{settings.LOKI_URL.rstrip('/')}/loki/api/v1/push"
    try:
        await http.post(url, json=payload, headers={"Content-Type": "application/json"})
    except Exception as e:
        # Log shipping must never break a refresh
        logger.debug(f"Loki push failed: {e}")
