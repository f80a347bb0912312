"""
WebhookEvent model for gateway notification tracking.

Every verified delivery is stored before it is applied. Gateway payloads
carry no event id, so deliveries are keyed by the SHA-256 of the raw
body: a byte-identical redelivery of an already processed payload is
acknowledged without being applied again.
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from authorized_payments.state_machines import WebhookEventStatus, WebhookOutcome


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    Audit trail and duplicate detection for webhook deliveries.

    Processing Flow:
        1. Signature verified by the view
        2. get_or_create by payload_hash
        3. PROCESSED -> acknowledge (duplicate delivery)
        4. mark_processing, apply, mark_processed or mark_failed
    """

    payload_hash = models.CharField(
        max_length=64,
        unique=True,
        help_text="SHA-256 hex digest of the raw request body",
    )

    payload = models.JSONField()

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
    )

    outcome = models.CharField(
        max_length=20,
        choices=WebhookOutcome.choices,
        null=True,
        blank=True,
        help_text="What applying the event did to local state",
    )

    processed_at = models.DateTimeField(null=True, blank=True)

    error_message = models.TextField(null=True, blank=True)

    attempt_count = models.PositiveSmallIntegerField(default=0)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        indexes = [
            models.Index(fields=["status", "created_at"], name="webhook_status_created_idx"),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.payload_hash[:12]}, {self.status})"

    @property
    def is_processed(self) -> bool:
        return self.status == WebhookEventStatus.PROCESSED

    def mark_processing(self) -> None:
        """Note: Does not save - caller must save after calling."""
        self.status = WebhookEventStatus.PROCESSING
        self.attempt_count += 1

    def mark_processed(self, outcome: str) -> None:
        """Note: Does not save - caller must save after calling."""
        self.status = WebhookEventStatus.PROCESSED
        self.outcome = outcome
        self.processed_at = timezone.now()
        self.error_message = None

    def mark_failed(self, error_message: str) -> None:
        """Note: Does not save - caller must save after calling."""
        self.status = WebhookEventStatus.FAILED
        self.error_message = error_message
