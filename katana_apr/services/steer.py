from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from katana_apr.models import Campaign, Opportunity, Strategy, TokenBreakdown, Vault
from katana_apr.services.apr_calculator import APRCalculator, token_info

logger = logging.getLogger(__name__)

DAYS_PER_YEAR = 365


def _as_float(value: Optional[str]) -> float:
    if not value:
        return 0.0
    try:
        return float(value)
    except ValueError:
        return 0.0


def daily_reward_value(campaign: Campaign) -> float:
    """USD value of one day of campaign emissions: amount / 10^decimals * price."""
    token = campaign.reward_token
    if token is None or token.decimals is None or not token.price:
        return 0.0
    amount = _as_float(campaign.amount)
    return max(0.0, amount / 10 ** token.decimals * token.price)


def vault_position_tvl(vault: Vault) -> float:
    # The whole vault is treated as the position in the pool
    if vault.tvl is None or vault.token is None or vault.token.decimals is None:
        return 0.0
    return max(0.0, _as_float(vault.tvl.total_assets) / 10 ** vault.token.decimals)


class SteerAprCalculator(APRCalculator):
    """Steer-managed Sushi concentrated liquidity positions (liquidity-pool family)."""

    family = "steer"
    protocol = "sushiswap"
    pool_type = "steer-lp"

    def matches_strategy(self, strategy: Strategy) -> bool:
        return "steer" in strategy.name.lower()

    def campaign_breakdowns(self, vault: Vault, opp: Opportunity, campaigns: List[Campaign]) -> List[TokenBreakdown]:
        if opp.apr_record is not None and opp.apr_record.breakdowns:
            return self.breakdowns_from_apr_record(opp, campaigns)
        return self.breakdowns_from_emissions(vault, campaigns)

    def breakdowns_from_emissions(self, vault: Vault, campaigns: List[Campaign]) -> List[TokenBreakdown]:
        valued: List[Tuple[Campaign, float]] = [
            (c, daily_reward_value(c)) for c in campaigns if c.reward_token is not None and c.amount
        ]
        total_daily = sum(v for _, v in valued)
        position_tvl = vault_position_tvl(vault)
        if position_tvl <= 0:
            logger.debug(f"Vault {vault.address} has no usable TVL, emission APRs degrade to 0")

        out: List[TokenBreakdown] = []
        for campaign, daily in valued:
            apr = (daily * DAYS_PER_YEAR / position_tvl) * 100 if position_tvl > 0 else 0.0
            out.append(
                TokenBreakdown(
                    apr=apr,
                    token=token_info(campaign.reward_token),
                    weight=daily / total_daily if total_daily > 0 else 0.0,
                )
            )
        return out
