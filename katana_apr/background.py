from __future__ import annotations

import asyncio
import logging
from typing import Optional

from redis.asyncio import Redis

from katana_apr.clients.merkl import MerklClient
from katana_apr.clients.rpc import StrategyResolver
from katana_apr.clients.ydaemon import YDaemonClient
from katana_apr.config import Settings, get_settings
from katana_apr.http import HttpClient
from katana_apr.services.aggregator import VaultAprAggregator
from katana_apr.services.cache import CacheStore, FileCacheStore, RedisCacheStore
from katana_apr.services.morpho import MorphoAprCalculator
from katana_apr.services.steer import SteerAprCalculator
from katana_apr.utils.loki import loki_log

logger = logging.getLogger(__name__)


def build_aggregator(settings: Settings, http: HttpClient, redis: Optional[Redis] = None) -> VaultAprAggregator:
    store: CacheStore
    if redis is not None:
        store = RedisCacheStore(redis, settings.REDIS_CACHE_KEY)
    else:
        store = FileCacheStore(settings.CACHE_FILE_PATH)

    merkl = MerklClient(http, settings.MERKL_API_BASE, settings.KATANA_CHAIN_ID)
    resolver = StrategyResolver(http, settings.KATANA_RPC_URL)
    calculators = [
        SteerAprCalculator(merkl, resolver, settings.REWARD_TOKEN_ADDRESS),
        MorphoAprCalculator(merkl, resolver, settings.REWARD_TOKEN_ADDRESS),
    ]
    return VaultAprAggregator(
        registry=YDaemonClient(http, settings.YDAEMON_BASE_URL),
        calculators=calculators,
        store=store,
        chain_id=settings.KATANA_CHAIN_ID,
        assumed_fdv=settings.ASSUMED_FDV,
        strict=settings.STRICT_CALCULATORS,
    )


class BackgroundRefresher:
    def __init__(
        self,
        redis: Optional[Redis] = None,
        http: Optional[HttpClient] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.http = http or HttpClient(timeout=self.settings.HTTP_TIMEOUT_SECONDS)
        self.aggregator = build_aggregator(self.settings, self.http, redis)
        self._task: asyncio.Task | None = None
        self._stopping = asyncio.Event()

    async def start(self) -> None:
        # First run happens inside the loop so a slow upstream cannot block startup
        if self._task is None:
            self._task = asyncio.create_task(self._run_loop())

    async def stop(self) -> None:
        self._stopping.set()
        if self._task:
            await self._task
        await self.http.aclose()

    async def run_once(self) -> None:
        try:
            records = await self.aggregator.generate()
        except Exception as e:
            logger.exception(f"APR refresh failed, keeping previous cache: {e}")
            await loki_log(
                self.http, "ERROR", "apr refresh failed", extra={"error": str(e)}, settings=self.settings
            )
            return
        if records is None:
            return
        with_rewards = sum(1 for r in records.values() if r.katana_rewards_apr > 0)
        logger.info(f"Refreshed APR data: {len(records)} vaults, {with_rewards} with rewards")
        await loki_log(
            self.http,
            "INFO",
            "apr refresh complete",
            extra={"vaults": len(records), "vaults_with_rewards": with_rewards},
            settings=self.settings,
        )

    async def _run_loop(self) -> None:
        interval = self.settings.REFRESH_INTERVAL_SECONDS
        logger.info(f"Background refresher started (interval={interval}s)")
        while not self._stopping.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
