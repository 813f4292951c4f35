"""WhatsApp webhook routes - Meta Cloud API integration.

Security:
- sender addresses and message text exist only in memory
- logs carry hashes and id prefixes, never raw identifiers

IMPORTANT: POST always answers 200 (except a failed hub.* handshake).
Meta retries on non-2xx responses, which would duplicate processing.
The response is written before the batch reaches the worker pool.
"""

import hashlib
import threading
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Header, Query, Request, Response
from fastapi.responses import JSONResponse

from anotatudo.config import load_settings
from anotatudo.dispatch import Dispatcher, build_dispatcher
from anotatudo.infra.time import utc_now
from anotatudo.observability.correlation import get_correlation_id
from anotatudo.observability.logging import get_logger
from anotatudo.observability.redaction import safe_log_context
from anotatudo.tasks.client import TasksClient
from anotatudo.whatsapp.models import InboundMessage
from anotatudo.whatsapp.webhook import (
    Accept,
    SignatureVerificationError,
    count_statuses,
    extract_messages,
    is_verification_request,
    verify,
    verify_signature,
)

router = APIRouter(tags=["webhooks"])

logger = get_logger(__name__)

_tasks_client: TasksClient | None = None
_dispatcher: Dispatcher | None = None
_closed = False
_lock = threading.Lock()


def _get_tasks_client() -> TasksClient:
    """Get tasks client instance (allows test injection)."""
    global _tasks_client
    with _lock:
        if _tasks_client is None:
            settings = load_settings()
            _tasks_client = TasksClient(
                backend=settings.tasks_backend,
                max_workers=settings.tasks_max_workers,
                max_pending=settings.tasks_max_pending,
            )
        return _tasks_client


def _set_tasks_client(client: TasksClient | None) -> None:
    global _tasks_client
    with _lock:
        _tasks_client = client


def _get_dispatcher() -> Dispatcher:
    """Get dispatcher, building it from settings on first use.

    Called from worker threads, so a configuration problem surfaces as a
    failed task, not as a failed webhook response.
    """
    global _dispatcher
    with _lock:
        if _dispatcher is None:
            _dispatcher = build_dispatcher(load_settings())
        return _dispatcher


def _set_dispatcher(dispatcher: Dispatcher | None) -> None:
    global _dispatcher
    with _lock:
        _dispatcher = dispatcher


def startup() -> None:
    """Accept batches again (app startup)."""
    global _closed
    with _lock:
        _closed = False


def shutdown() -> None:
    """Drain the worker pool and release the dispatcher (app shutdown).

    Batches whose enqueue runs after this point are dropped and logged
    instead of starting a new pool.
    """
    global _tasks_client, _dispatcher, _closed
    with _lock:
        _closed = True
        client, dispatcher = _tasks_client, _dispatcher
        _tasks_client, _dispatcher = None, None
    if client is not None:
        client.shutdown(wait=True)
    if dispatcher is not None:
        dispatcher.close()


def _handle_batch(payload: dict) -> None:
    _get_dispatcher().handle_batch(payload)


def _batch_task_id(messages: list[InboundMessage]) -> str:
    digest = hashlib.sha256("|".join(m.external_id for m in messages).encode("utf-8"))
    return f"whatsapp:{digest.hexdigest()[:32]}"


def _enqueue_batch(messages: list[InboundMessage], correlation_id: str) -> None:
    task_id = _batch_task_id(messages)
    if _closed:
        logger.warning(
            "webhook batch dropped: shutting down",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    task_id=task_id,
                    message_count=len(messages),
                )
            },
        )
        return
    accepted = _get_tasks_client().enqueue(
        task_id=task_id,
        handler=_handle_batch,
        payload={"messages": messages},
        correlation_id=correlation_id,
    )
    if not accepted:
        logger.warning(
            "webhook batch not enqueued",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    task_id=task_id,
                    message_count=len(messages),
                )
            },
        )


def _ok() -> JSONResponse:
    return JSONResponse(status_code=200, content={"success": True})


@router.get("/webhook")
async def webhook_verify(
    hub_mode: str = Query(None, alias="hub.mode"),
    hub_verify_token: str = Query(None, alias="hub.verify_token"),
    hub_challenge: str = Query(None, alias="hub.challenge"),
) -> Response:
    """Meta webhook verification endpoint.

    Meta sends a GET during webhook setup to verify ownership.

    Returns:
        200 with hub.challenge as plain text if the token matches.
        403 otherwise.
    """
    result = verify(
        {
            "hub.mode": hub_mode,
            "hub.verify_token": hub_verify_token,
            "hub.challenge": hub_challenge,
        },
        load_settings().verify_token,
    )

    if isinstance(result, Accept):
        logger.info("webhook verification successful")
        return Response(status_code=200, content=result.challenge, media_type="text/plain")

    logger.warning(
        "webhook verification failed",
        extra={"extra_fields": safe_log_context(reason=result.reason)},
    )
    return Response(status_code=403, content="verification failed")


@router.post("/webhook")
async def webhook_receive(
    request: Request,
    background_tasks: BackgroundTasks,
    x_hub_signature_256: str | None = Header(None, alias="X-Hub-Signature-256"),
) -> Response:
    """Receive a Meta Cloud API webhook.

    Normalizes the body into InboundMessages and hands the batch to the
    worker pool once the response has been sent.

    Returns:
        403 if the request carries hub.* parameters that fail verification.
        200 with hub.challenge as plain text if they pass; the body is not read.
        200 {"success": true} in every other case.
    """
    correlation_id = get_correlation_id()
    settings = load_settings()

    # 1. Verification handshake parameters on a POST short-circuit everything
    params = request.query_params
    if is_verification_request(params):
        result = verify(params, settings.verify_token)
        if isinstance(result, Accept):
            logger.info(
                "webhook verification successful",
                extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
            )
            return Response(status_code=200, content=result.challenge, media_type="text/plain")
        logger.warning(
            "webhook verification failed",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id, reason=result.reason
                )
            },
        )
        return Response(status_code=403, content="verification failed")

    # 2. Read raw body
    try:
        body_bytes = await request.body()
    except Exception:
        logger.warning(
            "failed to read request body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return _ok()

    # 3. Verify signature (if app secret configured)
    if settings.app_secret:
        try:
            verify_signature(body_bytes, x_hub_signature_256 or "", settings.app_secret)
        except SignatureVerificationError as e:
            logger.warning(
                "webhook signature verification failed",
                extra={
                    "extra_fields": safe_log_context(
                        correlationId=correlation_id, error=str(e)
                    )
                },
            )
            return _ok()

    # 4. Parse JSON
    try:
        payload: Any = await request.json()
    except ValueError:
        logger.warning(
            "invalid json body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return _ok()

    # 5. Normalize
    messages = list(extract_messages(payload, received_at=utc_now()))
    statuses = count_statuses(payload)
    if statuses:
        logger.debug(
            "status updates ignored",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id, status_count=statuses
                )
            },
        )

    if not messages:
        return _ok()

    logger.info(
        "webhook received",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                message_count=len(messages),
                kinds=",".join(m.kind.value for m in messages),
            )
        },
    )

    # 6. Enqueue after the response is written
    background_tasks.add_task(_enqueue_batch, messages, correlation_id)
    return _ok()
