r"""backend\app\api\v1\health.py

Health check endpoints.

``GET /api/v1/health`` is exempt from token auth so orchestrators and load
balancers can probe it.  Besides the liveness flag it reports whether sales
data is loaded and whether AI optimization is currently enabled.
"""

from fastapi import APIRouter

from ...services.optimization_engine import get_engine

router = APIRouter()


@router.get("/health")
async def health_check() -> dict:
    """Return a basic health indicator."""
    engine = get_engine()
    return {
        "status": "ok",
        "data_loaded": engine.data.loaded,
        "ai_enabled": engine.processor.ai_enabled,
        "queue_size": len(engine.queue),
    }
