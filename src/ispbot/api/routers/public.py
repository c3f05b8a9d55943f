"""Public routes."""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
def health(request: Request) -> dict:
    """Health check endpoint."""
    bot = getattr(request.app.state, "bot", None)
    return {
        "status": "ok",
        "pending_messages": bot.pipeline.pending if bot is not None else 0,
    }
