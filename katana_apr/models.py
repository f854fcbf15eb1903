from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


def _lenient_float(v: Any) -> Optional[float]:
    if v is None or isinstance(v, bool):
        return None
    try:
        out = float(v)
    except (TypeError, ValueError):
        return None
    return out if math.isfinite(out) else None


def _lenient_int(v: Any) -> Optional[int]:
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return None
    return int(v) if math.isfinite(v) else None


def _lenient_str(v: Any) -> Optional[str]:
    if v is None:
        return None
    if isinstance(v, (str, int, float)) and not isinstance(v, bool):
        return str(v)
    return None


def _dicts_only(v: Any) -> List[Dict[str, Any]]:
    if not isinstance(v, list):
        return []
    return [x for x in v if isinstance(x, dict)]


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in code. Unknown upstream fields are carried through untouched."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# ---------------------------------------------------------------------------
# Reward results
# ---------------------------------------------------------------------------


class TokenInfo(WireModel):
    address: str = ""
    symbol: str = ""
    decimals: int = 0
    assumed_fdv: Optional[float] = Field(default=None, alias="assumedFDV")

    @field_validator("address", "symbol", mode="before")
    @classmethod
    def _text(cls, v: Any) -> str:
        return _lenient_str(v) or ""

    @field_validator("decimals", mode="before")
    @classmethod
    def _decimals(cls, v: Any) -> int:
        return _lenient_int(v) or 0


class TokenBreakdown(WireModel):
    apr: float = Field(default=0.0, ge=0.0)
    token: TokenInfo = Field(default_factory=TokenInfo)
    weight: float = Field(default=0.0, ge=0.0, le=1.0)

    @classmethod
    def empty(cls) -> "TokenBreakdown":
        """Placeholder for a pool the incentive program tracks but currently does not reward."""
        return cls(apr=0.0, token=TokenInfo(), weight=0.0)


class RewardCalculatorResult(WireModel):
    strategy_address: str
    pool_address: str
    pool_type: str
    breakdown: TokenBreakdown


# ---------------------------------------------------------------------------
# Campaign provider payloads
# ---------------------------------------------------------------------------


class CampaignToken(TokenInfo):
    decimals: Optional[int] = None  # type: ignore[assignment]
    price: Optional[float] = None

    @field_validator("decimals", mode="before")
    @classmethod
    def _decimals(cls, v: Any) -> Optional[int]:
        return _lenient_int(v)

    @field_validator("price", mode="before")
    @classmethod
    def _price(cls, v: Any) -> Optional[float]:
        return _lenient_float(v)


class Campaign(WireModel):
    campaign_id: str = ""
    amount: Optional[str] = None
    reward_token: Optional[CampaignToken] = None

    @field_validator("campaign_id", mode="before")
    @classmethod
    def _campaign_id(cls, v: Any) -> str:
        return _lenient_str(v) or ""

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, v: Any) -> Optional[str]:
        return _lenient_str(v)

    @field_validator("reward_token", mode="before")
    @classmethod
    def _reward_token(cls, v: Any) -> Any:
        return v if isinstance(v, dict) else None


class AprBreakdown(WireModel):
    identifier: str = ""
    type: Optional[str] = None
    value: Optional[float] = None

    @field_validator("identifier", mode="before")
    @classmethod
    def _identifier(cls, v: Any) -> str:
        return _lenient_str(v) or ""

    @field_validator("type", mode="before")
    @classmethod
    def _type(cls, v: Any) -> Optional[str]:
        return _lenient_str(v)

    @field_validator("value", mode="before")
    @classmethod
    def _value(cls, v: Any) -> Optional[float]:
        return _lenient_float(v)


class AprRecord(WireModel):
    cumulated: Optional[float] = None
    breakdowns: List[AprBreakdown] = Field(default_factory=list)

    @field_validator("cumulated", mode="before")
    @classmethod
    def _cumulated(cls, v: Any) -> Optional[float]:
        return _lenient_float(v)

    @field_validator("breakdowns", mode="before")
    @classmethod
    def _breakdowns(cls, v: Any) -> List[Dict[str, Any]]:
        return _dicts_only(v)


class Opportunity(WireModel):
    identifier: str = ""
    name: Optional[str] = None
    campaigns: List[Campaign] = Field(default_factory=list)
    apr_record: Optional[AprRecord] = None

    @field_validator("identifier", mode="before")
    @classmethod
    def _identifier(cls, v: Any) -> str:
        return _lenient_str(v) or ""

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v: Any) -> Optional[str]:
        return _lenient_str(v)

    @field_validator("campaigns", mode="before")
    @classmethod
    def _campaigns(cls, v: Any) -> List[Dict[str, Any]]:
        return _dicts_only(v)

    @field_validator("apr_record", mode="before")
    @classmethod
    def _apr_record(cls, v: Any) -> Any:
        return v if isinstance(v, dict) else None

    @classmethod
    def parse(cls, raw: Any) -> Optional["Opportunity"]:
        if not isinstance(raw, dict):
            return None
        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Dropping malformed opportunity {raw.get('identifier')}: {e.error_count()} errors")
            return None


# ---------------------------------------------------------------------------
# Vault registry payloads
# ---------------------------------------------------------------------------


class VaultToken(WireModel):
    address: str = ""
    name: str = ""
    symbol: str = ""
    decimals: Optional[int] = None
    description: Optional[str] = None

    @field_validator("decimals", mode="before")
    @classmethod
    def _decimals(cls, v: Any) -> Optional[int]:
        return _lenient_int(v)


class VaultTVL(WireModel):
    total_assets: str = "0"
    tvl: float = 0.0
    price: float = 0.0

    @field_validator("total_assets", mode="before")
    @classmethod
    def _total_assets(cls, v: Any) -> str:
        return _lenient_str(v) or "0"

    @field_validator("tvl", "price", mode="before")
    @classmethod
    def _usd(cls, v: Any) -> float:
        return _lenient_float(v) or 0.0


class VaultAPR(WireModel):
    extra: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("extra", mode="before")
    @classmethod
    def _extra(cls, v: Any) -> Dict[str, Any]:
        return v if isinstance(v, dict) else {}


class StrategyDetails(WireModel):
    total_debt: str = "0"
    total_gain: str = "0"
    total_loss: str = "0"
    last_report: int = 0
    performance_fee: Optional[int] = None
    debt_ratio: Optional[int] = None  # basis points, 0..10000

    @field_validator("total_debt", "total_gain", "total_loss", mode="before")
    @classmethod
    def _amounts(cls, v: Any) -> str:
        return _lenient_str(v) or "0"

    @field_validator("last_report", mode="before")
    @classmethod
    def _last_report(cls, v: Any) -> int:
        return _lenient_int(v) or 0

    @field_validator("performance_fee", "debt_ratio", mode="before")
    @classmethod
    def _bps(cls, v: Any) -> Optional[int]:
        return _lenient_int(v)


class Strategy(WireModel):
    address: str = ""
    name: str = ""
    status: Optional[str] = None
    net_apr: Optional[float] = Field(default=None, alias="netAPR")
    details: Optional[StrategyDetails] = None

    # Set by the aggregator on derived records
    strategy_rewards_apr: Optional[float] = Field(default=None, alias="strategyRewardsAPR")
    reward_token: Optional[TokenInfo] = None
    reward_tokens: Optional[List[TokenBreakdown]] = None
    underlying_contract: Optional[str] = None
    assumed_fdv: Optional[float] = Field(default=None, alias="assumedFDV")

    @field_validator("address", "name", mode="before")
    @classmethod
    def _text(cls, v: Any) -> str:
        return _lenient_str(v) or ""

    @field_validator("net_apr", mode="before")
    @classmethod
    def _net_apr(cls, v: Any) -> Optional[float]:
        return _lenient_float(v)

    @field_validator("details", mode="before")
    @classmethod
    def _details(cls, v: Any) -> Any:
        return v if isinstance(v, dict) or isinstance(v, StrategyDetails) else None

    @property
    def is_active(self) -> bool:
        return bool(self.address) and (self.status or "").lower() == "active"

    @property
    def debt_ratio(self) -> int:
        if self.details is None or self.details.debt_ratio is None:
            return 0
        return self.details.debt_ratio


class Vault(WireModel):
    address: str
    name: str = ""
    symbol: str = ""
    chain_id: int = Field(
        default=0,
        validation_alias=AliasChoices("chainId", "chainID", "chain_id"),
        serialization_alias="chainId",
    )
    token: Optional[VaultToken] = None
    tvl: Optional[VaultTVL] = None
    apr: Optional[VaultAPR] = None
    strategies: List[Strategy] = Field(default_factory=list)

    @field_validator("strategies", mode="before")
    @classmethod
    def _strategies(cls, v: Any) -> List[Any]:
        if not isinstance(v, list):
            return []
        return [x for x in v if isinstance(x, (dict, Strategy))]


class VaultAPRRecord(Vault):
    """Derived, persisted view of a vault with reward APRs attached."""

    pools: Optional[List[str]] = None
    breakdown: List[TokenBreakdown] = Field(default_factory=list)

    @property
    def katana_rewards_apr(self) -> float:
        if self.apr is None:
            return 0.0
        return _lenient_float(self.apr.extra.get("katanaRewardsAPR")) or 0.0


class ServiceStatus(BaseModel):
    last_run_at: Optional[int]
    run_in_progress: bool
    vaults_tracked: int
    vaults_with_rewards: int
    avg_rewards_apr: float
