"""
Initial schema for authorized payments.

Creates:
    - Authorization: standing authorization with FSM status and version
    - Charge: one row per draw attempt, retry attempts point at their root
    - TransactionRecord: audit envelope for each gateway call
    - WebhookEvent: deliveries keyed by payload hash
"""

import uuid
from decimal import Decimal

import django.db.models.deletion
import django.utils.timezone
import django_fsm
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("contenttypes", "0002_remove_content_type_name"),
    ]

    operations = [
        migrations.CreateModel(
            name="Authorization",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
                (
                    "gateway_authorization_id",
                    models.CharField(
                        blank=True,
                        help_text="Gateway authorization id (assigned when approved)",
                        max_length=100,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "merchant_reference",
                    models.CharField(
                        blank=True,
                        help_text="Merchant idempotency key for correlating async responses",
                        max_length=50,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "customer_phone",
                    models.CharField(
                        db_index=True,
                        help_text="Customer phone, country code prefixed, digits only",
                        max_length=20,
                    ),
                ),
                (
                    "customer_email",
                    models.EmailField(
                        db_index=True,
                        help_text="Customer email",
                        max_length=320,
                    ),
                ),
                (
                    "max_amount",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Maximum total of successful charges",
                        max_digits=10,
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="EUR",
                        help_text="ISO 4217 currency code",
                        max_length=3,
                    ),
                ),
                (
                    "validity_date",
                    models.DateTimeField(
                        db_index=True,
                        help_text="Charges are refused after this instant",
                    ),
                ),
                (
                    "description",
                    models.CharField(
                        help_text="Description shown to the customer",
                        max_length=200,
                    ),
                ),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Free-form merchant data",
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("active", "Active"),
                            ("expired", "Expired"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current status of the authorization (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("activated_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("expired_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "verbose_name": "Authorization",
                "verbose_name_plural": "Authorizations",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "validity_date"],
                        name="auth_status_validity_idx",
                    ),
                    models.Index(
                        fields=["customer_email", "status"],
                        name="auth_email_status_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("max_amount__gt", 0)),
                        name="authorization_max_amount_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Charge",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
                (
                    "gateway_transaction_id",
                    models.CharField(
                        blank=True,
                        help_text="Gateway transaction id (unique once assigned)",
                        max_length=100,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "merchant_reference",
                    models.CharField(
                        help_text="Merchant transaction id sent with the charge request",
                        max_length=100,
                        unique=True,
                    ),
                ),
                ("amount", models.DecimalField(decimal_places=2, max_digits=10)),
                ("currency", models.CharField(default="EUR", max_length=3)),
                ("description", models.CharField(max_length=200)),
                (
                    "charged_at",
                    models.DateTimeField(
                        default=django.utils.timezone.now,
                        help_text="When the charge attempt was initiated",
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("success", "Success"),
                            ("failed", "Failed"),
                            ("refunded", "Refunded"),
                            ("partially_refunded", "Partially Refunded"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current status of the charge (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("settled_at", models.DateTimeField(blank=True, null=True)),
                ("error_message", models.TextField(blank=True, null=True)),
                (
                    "gateway_response",
                    models.JSONField(
                        blank=True,
                        help_text="Raw gateway response snapshot",
                        null=True,
                    ),
                ),
                ("retry_count", models.PositiveSmallIntegerField(default=0)),
                ("last_retry_at", models.DateTimeField(blank=True, null=True)),
                (
                    "refunded_amount",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        max_digits=10,
                    ),
                ),
                ("refunded_at", models.DateTimeField(blank=True, null=True)),
                (
                    "authorization",
                    models.ForeignKey(
                        help_text="Authorization this charge draws against",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="charges",
                        to="authorized_payments.authorization",
                    ),
                ),
                (
                    "parent",
                    models.ForeignKey(
                        blank=True,
                        help_text="Original charge when this row is a retry attempt",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="attempts",
                        to="authorized_payments.charge",
                    ),
                ),
            ],
            options={
                "verbose_name": "Charge",
                "verbose_name_plural": "Charges",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["authorization", "status"],
                        name="charge_auth_status_idx",
                    ),
                    models.Index(
                        fields=["status", "retry_count", "last_retry_at"],
                        name="charge_retry_lookup_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", 0)),
                        name="charge_amount_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("refunded_amount__gte", 0),
                            ("refunded_amount__lte", models.F("amount")),
                        ),
                        name="charge_refunded_amount_bounded",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="TransactionRecord",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "transaction_type",
                    models.CharField(
                        choices=[
                            ("authorization_request", "Authorization Request"),
                            ("charge", "Charge"),
                            ("refund", "Refund"),
                            ("cancellation", "Cancellation"),
                        ],
                        db_index=True,
                        max_length=30,
                    ),
                ),
                ("object_id", models.UUIDField()),
                (
                    "gateway_transaction_id",
                    models.CharField(blank=True, db_index=True, max_length=100, null=True),
                ),
                (
                    "merchant_transaction_id",
                    models.CharField(blank=True, db_index=True, max_length=100, null=True),
                ),
                (
                    "amount",
                    models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True),
                ),
                ("currency", models.CharField(default="EUR", max_length=3)),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("success", "Success"),
                            ("failed", "Failed"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("request_data", models.JSONField(blank=True, null=True)),
                ("response_data", models.JSONField(blank=True, null=True)),
                ("return_code", models.CharField(blank=True, max_length=50, null=True)),
                ("return_message", models.TextField(blank=True, null=True)),
                ("requested_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("processing_duration_ms", models.PositiveIntegerField(blank=True, null=True)),
                (
                    "content_type",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        to="contenttypes.contenttype",
                    ),
                ),
            ],
            options={
                "verbose_name": "Transaction Record",
                "verbose_name_plural": "Transaction Records",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["content_type", "object_id"],
                        name="txrecord_owner_idx",
                    ),
                    models.Index(
                        fields=["status", "created_at"],
                        name="txrecord_status_created_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "payload_hash",
                    models.CharField(
                        help_text="SHA-256 hex digest of the raw request body",
                        max_length=64,
                        unique=True,
                    ),
                ),
                ("payload", models.JSONField()),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("processed", "Processed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=20,
                    ),
                ),
                (
                    "outcome",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("applied", "Applied"),
                            ("duplicate", "Duplicate"),
                            ("unknown_event", "Unknown Event"),
                            ("unmatched", "Unmatched"),
                        ],
                        help_text="What applying the event did to local state",
                        max_length=20,
                        null=True,
                    ),
                ),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("error_message", models.TextField(blank=True, null=True)),
                ("attempt_count", models.PositiveSmallIntegerField(default=0)),
            ],
            options={
                "verbose_name": "Webhook Event",
                "verbose_name_plural": "Webhook Events",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "created_at"],
                        name="webhook_status_created_idx",
                    ),
                ],
            },
        ),
    ]
