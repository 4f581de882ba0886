"""Pipeline board routes: read state and invoke store operations."""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from deal_pipeline.models.deal import DealCreate, DealUpdate
from deal_pipeline.store import PipelineStore

from ..auth import get_user_store, verify_api_token

logger = structlog.get_logger(__name__)

router = APIRouter(dependencies=[Depends(verify_api_token)])


class MoveRequest(BaseModel):
    source_stage: str
    destination_stage: str
    destination_index: int = Field(default=0)


class SelectRequest(BaseModel):
    deal_id: str | None = None


def _state(store: PipelineStore) -> dict[str, Any]:
    return store.state.model_dump(mode="json")


def _failed(store: PipelineStore, status_code: int = 502) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": store.state.error, "state": _state(store)},
    )


def _require_deal(store: PipelineStore, deal_id: str) -> None:
    if deal_id not in store.state.deals:
        raise HTTPException(status_code=404, detail=f"Deal not found: {deal_id}")


@router.get("/pipeline")
async def get_pipeline(store: PipelineStore = Depends(get_user_store)):
    """Current board snapshot."""
    return _state(store)


@router.post("/pipeline/refresh")
async def refresh_pipeline(store: PipelineStore = Depends(get_user_store)):
    """Reload every deal from the gateway."""
    await store.fetch_deals()
    if store.state.error:
        return _failed(store)
    return _state(store)


@router.get("/pipeline/stats")
async def get_stats(store: PipelineStore = Depends(get_user_store)):
    return store.pipeline_stats().to_dict()


@router.get("/pipeline/attention")
async def get_attention(limit: int = 5, store: PipelineStore = Depends(get_user_store)):
    """Open deals that have gone longest without an update."""
    return [deal.model_dump(mode="json") for deal in store.attention_deals(limit=limit)]


@router.post("/deals", status_code=201)
async def create_deal(body: DealCreate, store: PipelineStore = Depends(get_user_store)):
    deal = await store.create_deal(body)
    if deal is None:
        return _failed(store)
    return {"deal": deal.model_dump(mode="json"), "state": _state(store)}


@router.patch("/deals/{deal_id}")
async def update_deal(
    deal_id: str,
    body: DealUpdate,
    store: PipelineStore = Depends(get_user_store),
):
    _require_deal(store, deal_id)
    deal = await store.update_deal(deal_id, body)
    if deal is None:
        return _failed(store)
    return {"deal": deal.model_dump(mode="json"), "state": _state(store)}


@router.delete("/deals/{deal_id}")
async def delete_deal(deal_id: str, store: PipelineStore = Depends(get_user_store)):
    _require_deal(store, deal_id)
    if not await store.delete_deal(deal_id):
        return _failed(store)
    return _state(store)


@router.post("/deals/select")
async def select_deal(body: SelectRequest, store: PipelineStore = Depends(get_user_store)):
    if body.deal_id is not None:
        _require_deal(store, body.deal_id)
    store.select_deal(body.deal_id)
    return _state(store)


@router.post("/deals/{deal_id}/move")
async def move_deal(
    deal_id: str,
    body: MoveRequest,
    store: PipelineStore = Depends(get_user_store),
):
    """Optimistic stage move; persistence continues in the background."""
    _require_deal(store, deal_id)
    correlation_id = store.move_deal_to_stage(
        deal_id,
        body.source_stage,
        body.destination_stage,
        body.destination_index,
    )
    logger.info(
        "pipeline_api.move",
        deal_id=deal_id,
        destination_stage=body.destination_stage,
        correlation_id=correlation_id,
    )
    return {"correlation_id": correlation_id, "state": _state(store)}


@router.post("/deals/{deal_id}/insight")
async def generate_insight(deal_id: str, store: PipelineStore = Depends(get_user_store)):
    _require_deal(store, deal_id)
    insight = await store.generate_ai_insight(deal_id)
    if insight is None:
        if deal_id in store.state.analyzing:
            return _failed(store, status_code=409)
        return _failed(store)
    return {"insight": insight, "state": _state(store)}


@router.post("/moves/{correlation_id}/undo")
async def undo_move(correlation_id: str, store: PipelineStore = Depends(get_user_store)):
    """Put back a deal whose stage change could not be saved."""
    if correlation_id not in store.state.failed_moves:
        raise HTTPException(status_code=404, detail=f"No failed move: {correlation_id}")
    undone = store.undo_failed_move(correlation_id)
    return {"undone": undone, "state": _state(store)}


@router.delete("/moves/{correlation_id}")
async def dismiss_move(correlation_id: str, store: PipelineStore = Depends(get_user_store)):
    """Keep the deal where it is and forget the failed save."""
    if not store.dismiss_failed_move(correlation_id):
        raise HTTPException(status_code=404, detail=f"No failed move: {correlation_id}")
    return _state(store)
