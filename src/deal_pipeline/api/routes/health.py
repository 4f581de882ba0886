"""Health check endpoint."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter()


@router.get("/health")
async def health(request: Request):
    """Check deal gateway connectivity."""
    try:
        healthy = await request.app.state.gateway.verify_connectivity()
    except Exception:
        healthy = False
    if not healthy:
        return JSONResponse(status_code=503, content={"status": "unhealthy"})
    return {"status": "ok"}
