from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import FastAPI, HTTPException
from redis.asyncio import Redis

from katana_apr.background import BackgroundRefresher
from katana_apr.config import get_settings
from katana_apr.exceptions import CollaboratorUnavailable, PersistenceFailure
from katana_apr.models import ServiceStatus
from katana_apr.services.aggregator import REWARDS_APR_KEY, VaultAprAggregator
from katana_apr.utils.logging import setup_logging

app = FastAPI(title="Katana Vault Reward APR", version="1.0.0")

logger = logging.getLogger(__name__)


def _get_aggregator() -> VaultAprAggregator:
    ref = getattr(app.state, "refresher", None)
    if ref is not None:
        return ref.aggregator
    aggregator = getattr(app.state, "aggregator", None)
    if aggregator is None:
        raise HTTPException(status_code=503, detail="Service is starting")
    return aggregator


@app.on_event("startup")
async def startup_event() -> None:
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)

    app.state.redis = None
    if settings.ENABLE_REDIS:
        app.state.redis = Redis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
    app.state.refresher = BackgroundRefresher(app.state.redis)
    await app.state.refresher.start()
    logger.info(f"Serving Katana APR data for chain {settings.KATANA_CHAIN_ID}")


@app.on_event("shutdown")
async def shutdown_event() -> None:
    if getattr(app.state, "refresher", None):
        await app.state.refresher.stop()
    if getattr(app.state, "redis", None):
        await app.state.redis.aclose()


@app.get("/health")
async def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.get("/api/vaults")
async def get_all_vaults() -> Dict[str, Any]:
    return await _get_aggregator().get_all()


@app.get("/api/vaults/{address}")
async def get_vault(address: str) -> Dict[str, Any]:
    record = await _get_aggregator().get_one(address)
    if record is None:
        raise HTTPException(status_code=404, detail=f"No APR data for vault {address}")
    return record


@app.post("/api/refresh")
async def post_refresh():
    aggregator = _get_aggregator()
    try:
        records = await aggregator.generate()
    except CollaboratorUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    except PersistenceFailure as e:
        raise HTTPException(status_code=500, detail=str(e))
    if records is None:
        raise HTTPException(status_code=409, detail="A refresh is already running")
    return {"refreshed": len(records), "last_run_at": aggregator.last_run_at}


@app.get("/api/status", response_model=ServiceStatus)
async def get_status():
    aggregator = _get_aggregator()
    records = await aggregator.get_all()
    aprs = []
    for rec in records.values():
        extra = (rec.get("apr") or {}).get("extra") or {}
        value = extra.get(REWARDS_APR_KEY)
        aprs.append(float(value) if isinstance(value, (int, float)) else 0.0)
    return ServiceStatus(
        last_run_at=aggregator.last_run_at,
        run_in_progress=aggregator.running,
        vaults_tracked=len(records),
        vaults_with_rewards=sum(1 for a in aprs if a > 0),
        avg_rewards_apr=(sum(aprs) / len(aprs)) if aprs else 0.0,
    )
