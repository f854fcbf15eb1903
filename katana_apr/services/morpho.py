from __future__ import annotations

from katana_apr.models import Strategy
from katana_apr.services.apr_calculator import APRCalculator


class MorphoAprCalculator(APRCalculator):
    """Strategies lending into Morpho vaults (lending-market family). APRs come from Merkl's APR record."""

    family = "morpho"
    protocol = "morpho"
    pool_type = "morpho-vault"

    def matches_strategy(self, strategy: Strategy) -> bool:
        return "morpho" in strategy.name.lower()
