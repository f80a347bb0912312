"""
Admin registrations for authorized payments.

The admin is read-mostly: state only changes through the service layer,
so status fields and gateway identifiers are read-only and nothing can
be deleted.
"""

from django.contrib import admin

from authorized_payments.ledger import AmountLedger
from authorized_payments.models import Authorization, Charge, TransactionRecord, WebhookEvent


class ChargeInline(admin.TabularInline):
    """Charge attempts drawn against an authorization."""

    model = Charge
    fk_name = "authorization"
    extra = 0
    fields = ["id", "amount", "status", "parent", "retry_count", "charged_at"]
    readonly_fields = fields
    can_delete = False
    show_change_link = True

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Authorization)
class AuthorizationAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "customer_email",
        "max_amount",
        "remaining_display",
        "status",
        "validity_date",
        "created_at",
    ]
    list_filter = ["status", "currency", "created_at"]
    search_fields = [
        "id",
        "gateway_authorization_id",
        "merchant_reference",
        "customer_email",
        "customer_phone",
    ]
    readonly_fields = [
        "id",
        "gateway_authorization_id",
        "merchant_reference",
        "status",
        "activated_at",
        "cancelled_at",
        "expired_at",
        "version",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    inlines = [ChargeInline]

    fieldsets = (
        (None, {"fields": ("id", "status", "gateway_authorization_id", "merchant_reference")}),
        ("Customer", {"fields": ("customer_phone", "customer_email")}),
        ("Limits", {"fields": ("max_amount", "currency", "validity_date", "description")}),
        (
            "State Timestamps",
            {
                "fields": ("activated_at", "cancelled_at", "expired_at"),
                "classes": ("collapse",),
            },
        ),
        ("Metadata", {"fields": ("metadata", "version"), "classes": ("collapse",)}),
        ("Timestamps", {"fields": ("created_at", "updated_at")}),
    )

    @admin.display(description="Remaining")
    def remaining_display(self, obj: Authorization) -> str:
        return f"{AmountLedger.remaining(obj)} {obj.currency}"

    def has_add_permission(self, request) -> bool:
        """Authorizations are created through the gateway flow only."""
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Charge)
class ChargeAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "authorization",
        "amount",
        "refunded_amount",
        "status",
        "retry_count",
        "charged_at",
    ]
    list_filter = ["status", "charged_at"]
    search_fields = ["id", "gateway_transaction_id", "merchant_reference", "authorization__id"]
    readonly_fields = [field.name for field in Charge._meta.fields]
    date_hierarchy = "charged_at"
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(TransactionRecord)
class TransactionRecordAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "transaction_type",
        "status",
        "merchant_transaction_id",
        "gateway_transaction_id",
        "amount",
        "processing_duration_ms",
        "requested_at",
    ]
    list_filter = ["transaction_type", "status"]
    search_fields = ["id", "merchant_transaction_id", "gateway_transaction_id", "object_id"]
    readonly_fields = [field.name for field in TransactionRecord._meta.fields]
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    list_display = ["id", "payload_hash", "status", "outcome", "attempt_count", "created_at"]
    list_filter = ["status", "outcome"]
    search_fields = ["id", "payload_hash"]
    readonly_fields = [field.name for field in WebhookEvent._meta.fields]
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False
