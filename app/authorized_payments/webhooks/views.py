"""
Webhook endpoint for gateway notices.

The view:
1. Verifies the HMAC signature (when a secret is configured)
2. Decodes the JSON body
3. Stores the delivery as a WebhookEvent keyed by payload hash
4. Applies it synchronously through ReconciliationService
5. Answers with a status the gateway's redelivery policy understands

Status codes:
    200: Applied, duplicate, unknown event or unmatched entity
    400: Undecodable or malformed payload (no retry)
    403: Missing or invalid signature
    409: Notice conflicts with recorded state (no retry, operator attention)
    503: Transient failure (gateway redelivers)

Usage:
    # In urls.py
    from authorized_payments.webhooks.views import gateway_webhook

    urlpatterns = [
        path("webhooks/gateway/", gateway_webhook, name="gateway_webhook"),
    ]
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging

from django.db import DatabaseError
from django.http import HttpRequest, HttpResponse, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from core.exceptions import BaseApplicationError, ConflictError

from authorized_payments.config import PaymentsConfig
from authorized_payments.models import WebhookEvent
from authorized_payments.services import ReconciliationService


logger = logging.getLogger(__name__)


SIGNATURE_HEADER = "X-Gateway-Signature"


def compute_signature(body: bytes, secret: str) -> str:
    """HMAC-SHA256 hex digest of the raw body."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: str, secret: str) -> bool:
    """Constant-time comparison of `signature` with the expected digest."""
    return hmac.compare_digest(compute_signature(body, secret), signature.strip().lower())


@csrf_exempt
@require_POST
def gateway_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive and apply a gateway webhook notice.

    Idempotency:
    - WebhookEvent.payload_hash is unique
    - A payload already PROCESSED returns 200 without being applied again
    - FAILED deliveries are applied again when the gateway redelivers
    """
    body = request.body
    config = PaymentsConfig.from_settings()
    secret = config.gateway.webhook_secret

    # Step 1: Verify signature
    if secret:
        signature = request.headers.get(SIGNATURE_HEADER, "")
        if not signature:
            logger.warning(f"Webhook received without {SIGNATURE_HEADER} header")
            return HttpResponse("Missing signature", status=403)
        if not verify_signature(body, signature, secret):
            logger.warning("Webhook signature verification failed")
            return HttpResponse("Invalid signature", status=403)
    else:
        logger.warning("Webhook signature verification skipped: no secret configured")

    # Step 2: Decode
    try:
        payload = json.loads(body)
    except (UnicodeDecodeError, ValueError):
        logger.warning("Webhook body is not valid JSON")
        return HttpResponse("Invalid JSON", status=400)

    # Step 3: Store the delivery
    payload_hash = hashlib.sha256(body).hexdigest()
    webhook_event, created = WebhookEvent.objects.get_or_create(
        payload_hash=payload_hash,
        defaults={"payload": payload},
    )
    if not created and webhook_event.is_processed:
        logger.info(
            "Webhook already processed, returning success",
            extra={"webhook_event_id": str(webhook_event.id)},
        )
        return JsonResponse({"outcome": webhook_event.outcome, "duplicate": True})

    webhook_event.mark_processing()
    webhook_event.save()

    # Step 4: Apply
    service = ReconciliationService(config=config)
    try:
        result = service.apply_webhook(payload)
    except (BaseApplicationError, DatabaseError) as e:
        # apply_webhook only lets transient failures escape
        logger.warning(
            f"Transient failure applying webhook: {type(e).__name__}",
            extra={"webhook_event_id": str(webhook_event.id), "error": str(e)},
        )
        webhook_event.mark_failed(str(e))
        webhook_event.save()
        if isinstance(e, BaseApplicationError):
            return JsonResponse(e.to_dict(), status=503)
        return HttpResponse("Temporarily unavailable", status=503)

    # Step 5: Answer
    if result.success:
        webhook_event.mark_processed(result.data)
        webhook_event.save()
        logger.info(
            f"Webhook processed: {result.data}",
            extra={"webhook_event_id": str(webhook_event.id), "outcome": result.data},
        )
        return JsonResponse({"outcome": result.data})

    webhook_event.mark_failed(result.error or "Webhook rejected")
    webhook_event.save()
    status = 409 if isinstance(result.exception, ConflictError) else 400
    return JsonResponse(result.to_response(), status=status)
