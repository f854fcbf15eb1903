from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Sequence, Tuple

from katana_apr.clients.merkl import MerklClient
from katana_apr.clients.rpc import StrategyResolver
from katana_apr.models import (
    Campaign,
    CampaignToken,
    Opportunity,
    RewardCalculatorResult,
    Strategy,
    TokenBreakdown,
    TokenInfo,
    Vault,
)
from katana_apr.utils.addresses import addresses_equal, normalize_address

logger = logging.getLogger(__name__)


def token_info(token: CampaignToken) -> TokenInfo:
    return TokenInfo(address=token.address, symbol=token.symbol, decimals=token.decimals or 0)


class APRCalculator(ABC):
    """Reward APRs for the strategies of one protocol family.

    Subclasses pick their strategies and may override how campaigns turn into
    token breakdowns; fetching, batched pool resolution and the campaign join
    are shared.
    """

    family: str = ""
    protocol: str = ""  # Merkl mainProtocolId
    pool_type: str = ""

    def __init__(self, campaigns: MerklClient, resolver: StrategyResolver, reward_token_address: str):
        self.campaigns = campaigns
        self.resolver = resolver
        self.reward_token_address = normalize_address(reward_token_address)

    @abstractmethod
    def matches_strategy(self, strategy: Strategy) -> bool:
        ...

    def family_strategies(self, vault: Vault) -> List[str]:
        return [s.address for s in vault.strategies if s.is_active and self.matches_strategy(s)]

    async def calculate_vault_aprs(self, vaults: Sequence[Vault]) -> Dict[str, List[RewardCalculatorResult]]:
        opportunities = await self.campaigns.get_opportunities(self.protocol)
        by_pool: Dict[str, Opportunity] = {}
        for opp in opportunities:
            key = normalize_address(opp.identifier)
            if key and key not in by_pool:
                by_pool[key] = opp

        pairs: List[Tuple[Vault, List[str]]] = []
        for vault in vaults:
            strategies = self.family_strategies(vault)
            if strategies:
                pairs.append((vault, strategies))
        if not pairs:
            logger.info(f"{self.family}: no active strategies in {len(vaults)} vaults")
            return {}

        all_strategies = sorted({normalize_address(s) for _, strategies in pairs for s in strategies})
        resolved = await self.resolver.resolve_pools(self.family, all_strategies)
        strategy_to_pool = {
            normalize_address(s): normalize_address(p) for s, p in resolved.items() if s and p
        }

        out: Dict[str, List[RewardCalculatorResult]] = {}
        for vault, strategies in pairs:
            vault_results: List[RewardCalculatorResult] = []
            for strategy in strategies:
                try:
                    vault_results.extend(self.strategy_results(vault, strategy, strategy_to_pool, by_pool))
                except Exception as e:
                    logger.warning(f"{self.family}: skipping strategy {strategy} of vault {vault.address}: {e}")
            if vault_results:
                out[normalize_address(vault.address)] = vault_results

        logger.info(
            f"{self.family}: {len(all_strategies)} strategies, {len(strategy_to_pool)} resolved, "
            f"{sum(len(r) for r in out.values())} results across {len(out)} vaults"
        )
        return out

    def strategy_results(
        self,
        vault: Vault,
        strategy: str,
        strategy_to_pool: Dict[str, str],
        by_pool: Dict[str, Opportunity],
    ) -> List[RewardCalculatorResult]:
        pool = strategy_to_pool.get(normalize_address(strategy))
        if not pool:
            return []

        opp = by_pool.get(pool)
        if opp is None or not opp.campaigns:
            logger.debug(f"{self.family}: no live campaign for pool {pool}")
            return [self._result(strategy, pool, TokenBreakdown.empty())]

        campaigns = [c for c in opp.campaigns if self.pays_reward_token(c)]
        breakdowns = self.campaign_breakdowns(vault, opp, campaigns)
        if not breakdowns:
            # Tracked pool with no matching campaign is still recorded as checked
            return [self._result(strategy, pool, TokenBreakdown.empty())]
        return [self._result(strategy, pool, b) for b in breakdowns]

    def pays_reward_token(self, campaign: Campaign) -> bool:
        if campaign.reward_token is None:
            return False
        return addresses_equal(campaign.reward_token.address, self.reward_token_address)

    def campaign_breakdowns(self, vault: Vault, opp: Opportunity, campaigns: List[Campaign]) -> List[TokenBreakdown]:
        return self.breakdowns_from_apr_record(opp, campaigns)

    def breakdowns_from_apr_record(self, opp: Opportunity, campaigns: List[Campaign]) -> List[TokenBreakdown]:
        entries = opp.apr_record.breakdowns if opp.apr_record else []
        matched: List[Tuple[Campaign, float]] = []
        for campaign in campaigns:
            if not campaign.campaign_id:
                continue
            campaign_id = campaign.campaign_id.lower()
            value = next(
                (e.value for e in entries if e.value is not None and e.identifier.lower() == campaign_id),
                None,
            )
            if value is None:
                continue
            matched.append((campaign, max(0.0, value)))

        total = sum(v for _, v in matched)
        return [
            TokenBreakdown(
                apr=value,
                token=token_info(campaign.reward_token),
                weight=value / total if total > 0 else 0.0,
            )
            for campaign, value in matched
        ]

    def _result(self, strategy: str, pool: str, breakdown: TokenBreakdown) -> RewardCalculatorResult:
        return RewardCalculatorResult(
            strategy_address=strategy,
            pool_address=pool,
            pool_type=self.pool_type,
            breakdown=breakdown,
        )
