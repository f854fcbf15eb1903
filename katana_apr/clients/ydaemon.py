from __future__ import annotations

import logging
from typing import Any, Dict, List

import httpx
from pydantic import ValidationError

from katana_apr.exceptions import CollaboratorUnavailable
from katana_apr.http import HttpClient
from katana_apr.models import Vault

logger = logging.getLogger(__name__)


class YDaemonClient:
    """Vault registry backed by the yDaemon REST API."""

    def __init__(self, http: HttpClient, base_url: str):
        self.http = http
        self.base_url = base_url.rstrip("/")

    async def get_vaults(self, chain_id: int) -> List[Vault]:
        url = f"{self.base_url}/{chain_id}/vaults/all"
        params: Dict[str, Any] = {"strategiesDetails": "withDetails", "strategiesCondition": "all"}
        try:
            resp = await self.http.get(url, params=params)
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise CollaboratorUnavailable("ydaemon", f"vault fetch failed for chain {chain_id}: {e}") from e

        if not isinstance(data, list):
            raise CollaboratorUnavailable("ydaemon", f"unexpected payload type {type(data).__name__}")

        vaults: List[Vault] = []
        for raw in data:
            if not isinstance(raw, dict):
                continue
            try:
                vaults.append(Vault.model_validate(raw))
            except ValidationError as e:
                logger.warning(f"Skipping malformed vault {raw.get('address')}: {e.error_count()} errors")
        logger.info(f"Fetched {len(vaults)} vaults for chain {chain_id}")
        return vaults
