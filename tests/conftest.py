from __future__ import annotations

import copy
import json
from typing import Any, Dict, List, Optional

import pytest

from katana_apr.models import Opportunity, Vault
from katana_apr.services.cache import CacheStore

VAULT_1 = "0xVa0000000000000000000000000000000000000A"
VAULT_2 = "0xVb0000000000000000000000000000000000000B"
STEER_STRAT = "0xAbC0000000000000000000000000000000000001"
MORPHO_STRAT = "0xAbC0000000000000000000000000000000000002"
IDLE_STRAT = "0xAbC0000000000000000000000000000000000003"
POOL_1 = "0xP100000000000000000000000000000000000001"
POOL_2 = "0xP200000000000000000000000000000000000002"
KAT = "0xKaT0000000000000000000000000000000000000"
OTHER_TOKEN = "0x0Th0000000000000000000000000000000000000"


def strategy(address: str, name: str, debt_ratio: Optional[int] = 5000, status: str = "active", **extra: Any) -> Dict[str, Any]:
    raw: Dict[str, Any] = {
        "address": address,
        "name": name,
        "status": status,
        "netAPR": 0.05,
        "details": {
            "totalDebt": "1000",
            "totalGain": "10",
            "totalLoss": "0",
            "lastReport": 1_700_000_000,
            "performanceFee": 1000,
        },
    }
    if debt_ratio is not None:
        raw["details"]["debtRatio"] = debt_ratio
    raw.update(extra)
    return raw


def make_vault(
    address: str = VAULT_1,
    strategies: Optional[List[Dict[str, Any]]] = None,
    total_assets: str = "1000000000000",
    decimals: Optional[int] = 6,
    apr: Optional[Dict[str, Any]] = None,
) -> Vault:
    raw: Dict[str, Any] = {
        "address": address,
        "name": "USDC yVault",
        "symbol": "yvUSDC",
        "chainID": 747474,
        "token": {"address": "0xToken", "name": "USD Coin", "symbol": "USDC", "decimals": decimals},
        "tvl": {"totalAssets": total_assets, "tvl": 1_000_000.0, "price": 1.0},
        "apr": apr if apr is not None else {"type": "v3", "netAPR": 0.04, "extra": {"stakingRewardsAPR": None}},
        "strategies": strategies if strategies is not None else [],
    }
    return Vault.model_validate(raw)


def campaign(campaign_id: str, token: str = KAT, amount: Optional[str] = "1000000000000000000000", price: Optional[float] = 0.5, decimals: Optional[int] = 18) -> Dict[str, Any]:
    return {
        "campaignId": campaign_id,
        "amount": amount,
        "rewardToken": {"address": token, "symbol": "KAT", "decimals": decimals, "price": price},
    }


def opportunity(identifier: str, campaigns: List[Dict[str, Any]], breakdowns: Optional[List[Dict[str, Any]]] = None) -> Opportunity:
    raw: Dict[str, Any] = {"identifier": identifier, "name": "pool", "campaigns": campaigns}
    if breakdowns is not None:
        raw["aprRecord"] = {"cumulated": None, "breakdowns": breakdowns}
    opp = Opportunity.parse(raw)
    assert opp is not None
    return opp


class FakeMerkl:
    def __init__(self, opportunities: Optional[Dict[str, List[Opportunity]]] = None, error: Optional[Exception] = None):
        self.opportunities = opportunities or {}
        self.error = error
        self.calls: List[str] = []

    async def get_opportunities(self, protocol: str) -> List[Opportunity]:
        self.calls.append(protocol)
        if self.error:
            raise self.error
        return list(self.opportunities.get(protocol, []))


class FakeResolver:
    def __init__(self, mapping: Optional[Dict[str, str]] = None, error: Optional[Exception] = None):
        self.mapping = mapping or {}
        self.error = error
        self.calls: List[tuple] = []

    async def resolve_pools(self, family: str, strategies) -> Dict[str, str]:
        strategies = list(strategies)
        self.calls.append((family, strategies))
        if self.error:
            raise self.error
        # Mixed-case answers, the way a checksumming resolver would return them
        return {s.upper().replace("0X", "0x"): p for s, p in self.mapping.items() if s.lower() in strategies}


class FakeRegistry:
    def __init__(self, vaults: Optional[List[Vault]] = None, error: Optional[Exception] = None):
        self.vaults = vaults or []
        self.error = error
        self.calls = 0

    async def get_vaults(self, chain_id: int) -> List[Vault]:
        self.calls += 1
        if self.error:
            raise self.error
        return [v.model_copy(deep=True) for v in self.vaults]


class MemoryStore(CacheStore):
    def __init__(self, initial: Optional[Dict[str, Dict[str, Any]]] = None):
        self._doc = json.dumps(initial or {})
        self.writes = 0

    async def put(self, records):
        self._doc = json.dumps(records)
        self.writes += 1

    async def get_all(self):
        return copy.deepcopy(json.loads(self._doc))


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()
