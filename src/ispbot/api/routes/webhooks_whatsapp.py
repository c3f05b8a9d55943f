"""WhatsApp webhook routes - Evolution API integration.

Security:
- Chat ids and text exist only in memory while the message is handled
- Logs contain NO PII (message ids are truncated, chat ids never logged here)
"""

import hmac
import os
from typing import Any

from fastapi import APIRouter, Header, Request, Response
from fastapi.responses import JSONResponse

from ispbot.observability.correlation import get_correlation_id
from ispbot.observability.logging import get_logger
from ispbot.observability.redaction import safe_log_context
from ispbot.whatsapp.evolution_adapter import InvalidPayloadError, normalize_batch

router = APIRouter(prefix="/webhooks/whatsapp", tags=["webhooks"])

logger = get_logger(__name__)


def _is_authorized(provided: str | None) -> bool:
    """Check the shared secret (fail-closed unless APP_ENV=local)."""
    correlation_id = get_correlation_id()
    expected_secret = os.environ.get("EVOLUTION_WEBHOOK_SECRET", "")

    if not expected_secret:
        if os.environ.get("APP_ENV", "") == "local":
            logger.warning(
                "EVOLUTION_WEBHOOK_SECRET not set - skipping validation (local dev)",
                extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
            )
            return True
        logger.error(
            "EVOLUTION_WEBHOOK_SECRET not configured - rejecting webhook (fail-closed)",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return False

    if not provided or not hmac.compare_digest(provided, expected_secret):
        logger.warning(
            "evolution webhook secret mismatch",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return False

    return True


@router.post("/evolution")
async def evolution_webhook(
    request: Request,
    x_webhook_secret: str | None = Header(None, alias="X-Webhook-Secret"),
) -> Response:
    """Receive an Evolution API (or Baileys) messages upsert.

    Each message that survives the adapter's filters is recorded and queued
    on its chat; the reply is sent asynchronously.

    Returns:
        200 OK with the number of messages queued for the bot.
        400 Bad Request if the body is not JSON or not an upsert.
        401 Unauthorized if secret validation fails.
    """
    correlation_id = get_correlation_id()

    if not _is_authorized(x_webhook_secret):
        return Response(status_code=401, content="unauthorized")

    # 1. Parse JSON
    try:
        payload: Any = await request.json()
    except Exception:
        logger.warning(
            "invalid json body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=400, content="invalid json")

    # 2. Normalize and filter (PII stays in memory)
    try:
        messages = list(normalize_batch(payload))
    except InvalidPayloadError:
        logger.warning(
            "invalid evolution payload shape",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=400, content="invalid payload shape")

    # 3. Record and queue, in payload order
    pipeline = request.app.state.bot.pipeline
    accepted = 0
    for msg in messages:
        if await pipeline.submit(msg):
            accepted += 1

    logger.info(
        "evolution webhook received",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                received=len(messages),
                accepted=accepted,
                message_id_prefixes=",".join(m.message_id[:8] for m in messages),
            )
        },
    )

    return JSONResponse({"ok": True, "accepted": accepted})
