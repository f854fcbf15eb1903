from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from katana_apr.clients.ydaemon import YDaemonClient
from katana_apr.models import (
    RewardCalculatorResult,
    Strategy,
    TokenBreakdown,
    TokenInfo,
    Vault,
    VaultAPR,
    VaultAPRRecord,
)
from katana_apr.services.apr_calculator import APRCalculator
from katana_apr.services.cache import CacheStore
from katana_apr.utils.addresses import normalize_address

logger = logging.getLogger(__name__)

DEFAULT_FDV = 1_000_000_000
MAX_DEBT_RATIO = 10_000  # basis points
REWARDS_APR_KEY = "katanaRewardsAPR"


def merge_by_token(entries: Iterable[Tuple[TokenInfo, float, float]]) -> List[TokenBreakdown]:
    """Sum (token, apr, weight) entries per reward token and rescale the weights to sum to 1.

    Entries without a token address (empty-pool placeholders) are dropped. APR and
    weight are summed independently; renormalizing weights never changes APRs.
    """
    tokens: Dict[str, TokenInfo] = {}
    aprs: Dict[str, float] = defaultdict(float)
    weights: Dict[str, float] = defaultdict(float)
    for token, apr, weight in entries:
        key = normalize_address(token.address)
        if not key:
            continue
        tokens.setdefault(key, token.model_copy())
        aprs[key] += apr
        weights[key] += weight

    total_weight = sum(weights.values())
    return [
        TokenBreakdown(
            apr=aprs[key],
            token=token,
            weight=weights[key] / total_weight if total_weight > 0 else 0.0,
        )
        for key, token in tokens.items()
    ]


class VaultAprAggregator:
    def __init__(
        self,
        registry: YDaemonClient,
        calculators: Sequence[APRCalculator],
        store: CacheStore,
        chain_id: int,
        assumed_fdv: float = DEFAULT_FDV,
        strict: bool = True,
    ):
        self.registry = registry
        self.calculators = list(calculators)
        self.store = store
        self.chain_id = chain_id
        self.assumed_fdv = assumed_fdv
        self.strict = strict
        self._lock = asyncio.Lock()
        self._last_run_at: int | None = None

    @property
    def last_run_at(self) -> int | None:
        return self._last_run_at

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def generate(self) -> Optional[Dict[str, VaultAPRRecord]]:
        """Recompute every vault record and replace the cache.

        Returns None without doing anything when a run is already in flight.
        Collaborator and persistence failures propagate and leave the cache as it was.
        """
        if self._lock.locked():
            logger.info("APR generation already running, skipping this trigger")
            return None

        async with self._lock:
            started = time.monotonic()
            vaults = await self.registry.get_vaults(self.chain_id)
            per_family = await self._run_calculators(vaults)

            records: Dict[str, VaultAPRRecord] = {}
            wire: Dict[str, Dict[str, Any]] = {}
            failed = 0
            for vault in vaults:
                key = normalize_address(vault.address)
                results = [r for family_results in per_family for r in family_results.get(key, [])]
                try:
                    record = self.aggregate_vault(vault, results)
                    wire[key] = record.to_wire()
                except Exception:
                    logger.exception(f"Error processing vault {vault.address}, storing zero APR")
                    failed += 1
                    record = self.placeholder(vault)
                    wire[key] = record.to_wire()
                records[key] = record

            await self.store.put(wire)
            self._last_run_at = int(time.time())
            logger.info(
                f"Generated APR data for {len(records)} vaults "
                f"({failed} degraded) in {time.monotonic() - started:.1f}s"
            )
            return records

    async def _run_calculators(self, vaults: List[Vault]) -> List[Dict[str, List[RewardCalculatorResult]]]:
        tasks = [asyncio.create_task(calc.calculate_vault_aprs(vaults)) for calc in self.calculators]
        try:
            outcomes = await asyncio.gather(*tasks, return_exceptions=not self.strict)
        except BaseException:
            # Siblings must be finished before the lock is released
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        out: List[Dict[str, List[RewardCalculatorResult]]] = []
        for calc, outcome in zip(self.calculators, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"{calc.family} calculator failed, it contributes nothing this run: {outcome}")
                out.append({})
            else:
                out.append(outcome)
        return out

    def aggregate_vault(self, vault: Vault, results: Sequence[RewardCalculatorResult]) -> VaultAPRRecord:
        source = vault.model_copy(deep=True)

        by_strategy: Dict[str, List[RewardCalculatorResult]] = defaultdict(list)
        for result in results:
            by_strategy[normalize_address(result.strategy_address)].append(result)

        blended = 0.0
        pools: List[str] = []
        vault_entries: List[Tuple[TokenInfo, float, float]] = []
        strategies: List[Strategy] = []
        for strat in source.strategies:
            if not strat.is_active:
                strategies.append(strat)
                continue

            matched = by_strategy.get(normalize_address(strat.address), [])
            tokens = merge_by_token((m.breakdown.token, m.breakdown.apr, m.breakdown.weight) for m in matched)
            rewards_apr = sum(t.apr for t in tokens) / 100  # results carry percentage points

            strat.strategy_rewards_apr = rewards_apr
            strat.assumed_fdv = self.assumed_fdv
            if matched:
                strat.underlying_contract = matched[0].pool_address
            if tokens:
                primary = max(tokens, key=lambda t: t.weight)
                strat.reward_token = primary.token.model_copy(update={"assumed_fdv": self.assumed_fdv})
                strat.reward_tokens = tokens

            share = strat.debt_ratio / MAX_DEBT_RATIO
            blended += rewards_apr * share
            for m in matched:
                if m.pool_address not in pools:
                    pools.append(m.pool_address)
                vault_entries.append((m.breakdown.token, m.breakdown.apr / 100 * share, m.breakdown.weight * share))
            strategies.append(strat)

        apr = source.apr or VaultAPR()
        apr.extra[REWARDS_APR_KEY] = blended

        return VaultAPRRecord(
            address=source.address,
            symbol=source.symbol,
            name=source.name,
            chain_id=source.chain_id,
            token=source.token,
            tvl=source.tvl,
            apr=apr,
            strategies=strategies,
            pools=pools or None,
            breakdown=merge_by_token(vault_entries),
        )

    def placeholder(self, vault: Vault) -> VaultAPRRecord:
        apr = vault.apr.model_copy(deep=True) if vault.apr else VaultAPR()
        apr.extra[REWARDS_APR_KEY] = 0.0
        return VaultAPRRecord(
            address=vault.address,
            symbol=vault.symbol,
            name=vault.name,
            chain_id=vault.chain_id,
            token=vault.token.model_copy(deep=True) if vault.token else None,
            tvl=vault.tvl.model_copy(deep=True) if vault.tvl else None,
            apr=apr,
            strategies=[s.model_copy(deep=True) for s in vault.strategies],
            pools=None,
            breakdown=[],
        )

    async def get_one(self, vault_address: str) -> Optional[Dict[str, Any]]:
        return await self.store.get(vault_address)

    async def get_all(self) -> Dict[str, Dict[str, Any]]:
        return await self.store.get_all()
