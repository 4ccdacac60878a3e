"""Admin and ingestion HTTP API.

Alerts are posted to ``/api/notifications``; the remaining routes let an
operator correct contract addresses, manage known-token overrides and
inspect subscribers.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from pydantic import BaseModel, Field

from fomo_relay import __version__
from fomo_relay.alerter.editor import EditKind, NotificationNotFoundError
from fomo_relay.dispatcher import InvalidAlertError
from fomo_relay.pipeline import Pipeline
from fomo_relay.resolver.known_tokens import DuplicateKnownTokenError, KnownTokenNotFoundError
from fomo_relay.resolver.models import Chain
from fomo_relay.storage.repos import (
    NotificationRepository,
    SentMessageRepository,
    TraderRepository,
    UserRepository,
    UserTraderRepository,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["admin"])


class AlertIn(BaseModel):
    message: str


class EditIn(BaseModel):
    contract_address: str = Field(min_length=1)
    chain: str | None = None


class KnownTokenIn(BaseModel):
    symbol: str = Field(min_length=1)
    contract_address: str = Field(min_length=1)
    min_market_cap: Decimal = Field(default=Decimal("0"), ge=0)
    chain: str | None = None


class TokenCacheIn(BaseModel):
    ticker: str = Field(min_length=1)
    contract_address: str = Field(min_length=1)
    chain: str = "SOL"


def get_pipeline(request: Request) -> Pipeline:
    """Inject the running pipeline."""
    pipeline: Pipeline = request.app.state.pipeline
    if not pipeline.is_running:
        raise HTTPException(status_code=503, detail="Relay is not running")
    return pipeline


def _parse_chain(value: str | None) -> Chain | None:
    if value is None or value == "":
        return None
    chain = Chain.parse(value)
    if chain is None:
        raise HTTPException(status_code=400, detail=f"Unknown chain '{value}'")
    return chain


@router.post("/notifications")
async def create_notification(body: AlertIn, pipeline: Pipeline = Depends(get_pipeline)) -> dict[str, Any]:
    """Dispatch one alert to subscribers."""
    try:
        result = await pipeline.dispatch(body.message)
    except InvalidAlertError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return result.to_dict()


@router.get("/notifications")
async def list_notifications(
    limit: int = Query(default=50, ge=1, le=500),
    pipeline: Pipeline = Depends(get_pipeline),
) -> list[dict[str, Any]]:
    """Recent notifications with the number of delivered copies."""
    async with pipeline.db.get_async_session() as session:
        notifications = await NotificationRepository(session).list_recent(limit=limit)
        counts = await SentMessageRepository(session).count_by_notification(
            n.id for n in notifications if n.id is not None
        )
    return [{**asdict(n), "recipient_count": counts.get(n.id or 0, 0)} for n in notifications]


@router.post("/notifications/{notification_id}/edit")
async def edit_notification(
    notification_id: int,
    body: EditIn,
    pipeline: Pipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    """Manually attach a contract address to a delivered notification."""
    chain = _parse_chain(body.chain) or Chain.SOL
    try:
        result = await pipeline.editor.apply_contract_address(
            notification_id, body.contract_address, chain, kind=EditKind.MANUAL
        )
    except NotificationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except Exception as e:
        logger.exception("Manual edit of notification %d failed", notification_id)
        raise HTTPException(status_code=500, detail="Failed to edit notification") from e
    return {
        "notification_id": result.notification_id,
        "edited": result.edited,
        "failed": result.failed,
        "total": result.total,
    }


@router.get("/known-tokens")
async def list_known_tokens(pipeline: Pipeline = Depends(get_pipeline)) -> list[dict[str, Any]]:
    return [asdict(t) for t in await pipeline.known_tokens.get_all()]


@router.post("/known-tokens", status_code=201)
async def create_known_token(body: KnownTokenIn, pipeline: Pipeline = Depends(get_pipeline)) -> dict[str, Any]:
    try:
        token = await pipeline.known_tokens.add(
            body.symbol,
            body.contract_address,
            min_market_cap=body.min_market_cap,
            chain=_parse_chain(body.chain),
        )
    except DuplicateKnownTokenError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return asdict(token)


@router.put("/known-tokens/{token_id}")
async def update_known_token(
    token_id: int,
    body: KnownTokenIn,
    pipeline: Pipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    try:
        token = await pipeline.known_tokens.update(
            token_id,
            symbol=body.symbol,
            contract_address=body.contract_address,
            min_market_cap=body.min_market_cap,
            chain=_parse_chain(body.chain),
        )
    except KnownTokenNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except DuplicateKnownTokenError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return asdict(token)


@router.delete("/known-tokens/{token_id}", status_code=204)
async def delete_known_token(token_id: int, pipeline: Pipeline = Depends(get_pipeline)) -> None:
    try:
        await pipeline.known_tokens.delete(token_id)
    except KnownTokenNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e


@router.post("/known-tokens/refresh-cache")
async def refresh_known_tokens(pipeline: Pipeline = Depends(get_pipeline)) -> dict[str, Any]:
    """Reload the override cache from the database."""
    pipeline.known_tokens.invalidate()
    await pipeline.known_tokens.populate()
    return {"count": len(await pipeline.known_tokens.get_all())}


@router.post("/token-cache", status_code=201)
async def add_cached_token(body: TokenCacheIn, pipeline: Pipeline = Depends(get_pipeline)) -> dict[str, Any]:
    """Seed the resolution cache for a ticker."""
    chain = _parse_chain(body.chain) or Chain.SOL
    await pipeline.token_cache.put(body.ticker.strip(), body.contract_address.strip(), chain)
    return {"ticker": body.ticker.strip(), "contract_address": body.contract_address.strip(), "chain": chain.value}


@router.get("/users")
async def list_users(pipeline: Pipeline = Depends(get_pipeline)) -> list[dict[str, Any]]:
    async with pipeline.db.get_async_session() as session:
        users = await UserRepository(session).list_all()
    return [asdict(u) for u in users]


@router.post("/users/{chat_id}/deactivate")
async def deactivate_user(chat_id: int, pipeline: Pipeline = Depends(get_pipeline)) -> dict[str, Any]:
    async with pipeline.db.get_async_session() as session:
        found = await UserRepository(session).deactivate(chat_id)
    if not found:
        raise HTTPException(status_code=404, detail=f"User {chat_id} not found")
    return {"chat_id": chat_id, "is_active": False}


@router.get("/traders")
async def list_traders(pipeline: Pipeline = Depends(get_pipeline)) -> list[dict[str, Any]]:
    async with pipeline.db.get_async_session() as session:
        traders = await TraderRepository(session).list_all()
        edges = UserTraderRepository(session)
        return [{**asdict(t), "follower_count": len(await edges.follower_ids(t.id))} for t in traders]


def create_app(pipeline: Pipeline, *, manage_lifecycle: bool = True) -> FastAPI:
    """Build the API around ``pipeline``.

    Args:
        pipeline: Relay pipeline whose components serve the routes.
        manage_lifecycle: Start and stop the pipeline with the app lifespan.
    """

    @asynccontextmanager
    async def lifespan(fastapi_app: FastAPI):
        if manage_lifecycle:
            await pipeline.start()
        try:
            yield
        finally:
            if manage_lifecycle:
                await pipeline.stop()

    app = FastAPI(
        title="FOMO Relay",
        description="Trade alert relay admin and ingestion API",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.pipeline = pipeline
    app.include_router(router)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Return health check status."""
        stats = pipeline.stats
        return {
            "status": "ok" if pipeline.is_running else "degraded",
            "state": pipeline.state.value,
            "pending_retries": len(await pipeline.retry_queue.pending()) if pipeline.is_running else 0,
            "alerts_received": stats.alerts_received,
            "alerts_sent": stats.alerts_sent,
        }

    return app
