import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest
from pydantic import ValidationError

from katana_apr.background import BackgroundRefresher, build_aggregator
from katana_apr.config import Settings
from katana_apr.exceptions import CollaboratorUnavailable
from katana_apr.http import HttpClient
from katana_apr.services.cache import FileCacheStore, RedisCacheStore
from katana_apr.services.morpho import MorphoAprCalculator
from katana_apr.services.steer import SteerAprCalculator


def offline_http() -> HttpClient:
    return HttpClient(transport=httpx.MockTransport(lambda r: httpx.Response(503)))


def settings(**overrides) -> Settings:
    values = {"REWARD_TOKEN_ADDRESS": "0xKAT", "_env_file": None}
    values.update(overrides)
    return Settings(**values)


def test_build_aggregator_wiring(tmp_path):
    config = settings(CACHE_FILE_PATH=str(tmp_path / "c.json"), ASSUMED_FDV=5e8)
    agg = build_aggregator(config, offline_http())

    assert isinstance(agg.store, FileCacheStore)
    assert [type(c) for c in agg.calculators] == [SteerAprCalculator, MorphoAprCalculator]
    assert all(c.reward_token_address == "0xkat" for c in agg.calculators)
    assert agg.assumed_fdv == 5e8
    assert agg.chain_id == 747474

    assert isinstance(build_aggregator(config, offline_http(), redis=AsyncMock()).store, RedisCacheStore)


@pytest.mark.asyncio
async def test_failed_run_does_not_escape():
    refresher = BackgroundRefresher(http=offline_http(), settings=settings())
    refresher.aggregator.generate = AsyncMock(side_effect=CollaboratorUnavailable("merkl", "down"))
    await refresher.run_once()
    refresher.aggregator.generate.assert_awaited_once()
    await refresher.http.aclose()


@pytest.mark.asyncio
async def test_loop_runs_immediately_and_stops():
    refresher = BackgroundRefresher(http=offline_http(), settings=settings())
    refresher.aggregator.generate = AsyncMock(return_value={})
    await refresher.start()
    for _ in range(5):
        await asyncio.sleep(0)
    await refresher.stop()
    refresher.aggregator.generate.assert_awaited_once()


def test_reward_token_is_required(monkeypatch):
    monkeypatch.delenv("REWARD_TOKEN_ADDRESS", raising=False)
    with pytest.raises(ValidationError):
        Settings(_env_file=None)
    with pytest.raises(ValidationError):
        Settings(_env_file=None, REWARD_TOKEN_ADDRESS="  ")
