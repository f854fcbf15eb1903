from __future__ import annotations

import logging
from typing import Any, Dict, List

import httpx

from katana_apr.exceptions import CollaboratorUnavailable
from katana_apr.http import HttpClient
from katana_apr.models import Opportunity

logger = logging.getLogger(__name__)

PAGE_SIZE = 100
MAX_PAGES = 20


class MerklClient:
    """Campaign data provider: Merkl v4 opportunities for one chain."""

    def __init__(self, http: HttpClient, base_url: str, chain_id: int):
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.chain_id = chain_id

    async def get_opportunities(self, protocol: str) -> List[Opportunity]:
        """Fetch every opportunity of `protocol` (a Merkl mainProtocolId) with its campaigns and APR record."""
        url = f"{self.base_url}/opportunities"
        out: List[Opportunity] = []
        for page in range(MAX_PAGES):
            params: Dict[str, Any] = {
                "chainId": self.chain_id,
                "mainProtocolId": protocol,
                "campaigns": "true",
                "items": PAGE_SIZE,
                "page": page,
            }
            try:
                resp = await self.http.get(url, params=params)
                items = resp.json()
            except (httpx.HTTPError, ValueError) as e:
                raise CollaboratorUnavailable("merkl", f"opportunity fetch failed for {protocol}: {e}") from e
            if not isinstance(items, list):
                raise CollaboratorUnavailable("merkl", f"unexpected payload type {type(items).__name__}")

            for raw in items:
                opp = Opportunity.parse(raw)
                if opp is not None:
                    out.append(opp)
            if len(items) < PAGE_SIZE:
                break
        else:
            logger.warning(f"Merkl {protocol}: stopped after {MAX_PAGES} pages, results may be truncated")

        logger.info(f"Fetched {len(out)} Merkl opportunities for {protocol}")
        return out
