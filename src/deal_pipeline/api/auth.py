"""Bearer token authentication and per-user store resolution."""

from fastapi import Header, HTTPException, Request

from deal_pipeline.store import PipelineStore

from .config import get_settings


async def verify_api_token(authorization: str = Header(...)) -> None:
    """Validate the bearer token sent by the board client."""
    expected = f"Bearer {get_settings().PIPELINE_API_KEY}"
    if authorization != expected:
        raise HTTPException(status_code=401, detail="Invalid or missing bearer token")


async def get_user_store(request: Request, x_user_id: str = Header(...)) -> PipelineStore:
    """Resolve the caller's store from the ``X-User-Id`` header."""
    if not x_user_id.strip():
        raise HTTPException(status_code=400, detail="X-User-Id header is empty")
    return await request.app.state.stores.acquire(x_user_id.strip())
