from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import httpx
from eth_abi import decode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector as fourbyte

from katana_apr.exceptions import CollaboratorUnavailable
from katana_apr.http import HttpClient
from katana_apr.utils.addresses import normalize_address

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# View calls followed from a strategy to the contract whose address the campaign provider uses as identifier.
DEFAULT_CALL_PATHS: Dict[str, Sequence[str]] = {
    "steer": ("STEER_LP()", "pool()"),
    "morpho": ("vault()",),
}


def _decode_address(result: Any) -> Optional[str]:
    if not isinstance(result, str) or not result.startswith("0x") or len(result) < 66:
        return None
    try:
        (address,) = decode(["address"], bytes.fromhex(result[2:66]))
    except (ValueError, DecodingError):
        return None
    address = normalize_address(address)
    return None if address == ZERO_ADDRESS else address


class StrategyResolver:
    """Resolves strategies to their underlying pool/vault with batched eth_call over JSON-RPC."""

    def __init__(self, http: HttpClient, rpc_url: str, call_paths: Optional[Mapping[str, Sequence[str]]] = None):
        self.http = http
        self.rpc_url = rpc_url
        self.call_paths = dict(call_paths or DEFAULT_CALL_PATHS)

    async def resolve_pools(self, family: str, strategies: Iterable[str]) -> Dict[str, str]:
        """Return {strategy: pool}, both lowercased. Strategies that revert or point at nothing are left out."""
        path = self.call_paths.get(family)
        if not path:
            raise ValueError(f"No resolver call path for protocol family '{family}'")

        current = {normalize_address(s): normalize_address(s) for s in strategies if s}
        for signature in path:
            if not current:
                break
            targets = sorted(set(current.values()))
            answers = await self._batch_address_call(targets, signature)
            current = {strategy: answers[target] for strategy, target in current.items() if target in answers}
        logger.debug(f"Resolved {len(current)} {family} strategies")
        return current

    async def _batch_address_call(self, targets: List[str], signature: str) -> Dict[str, str]:
        selector = "0x" + fourbyte(signature).hex()
        payload = [
            {"jsonrpc": "2.0", "id": i, "method": "eth_call", "params": [{"to": target, "data": selector}, "latest"]}
            for i, target in enumerate(targets)
        ]
        try:
            resp = await self.http.post(self.rpc_url, json=payload)
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise CollaboratorUnavailable("rpc", f"{signature} batch of {len(targets)} failed: {e}") from e

        if isinstance(data, dict):
            raise CollaboratorUnavailable("rpc", f"{signature} batch rejected: {data.get('error')}")
        if not isinstance(data, list):
            raise CollaboratorUnavailable("rpc", f"unexpected payload type {type(data).__name__}")

        out: Dict[str, str] = {}
        for item in data:
            if not isinstance(item, dict):
                continue
            idx = item.get("id")
            if not isinstance(idx, int) or not 0 <= idx < len(targets):
                continue
            if "error" in item:
                logger.debug(f"{signature} reverted on {targets[idx]}: {item['error']}")
                continue
            address = _decode_address(item.get("result"))
            if address:
                out[targets[idx]] = address
        return out
