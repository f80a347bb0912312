"""
Webhook handling for gateway notices.

Notices are verified, stored by payload hash and applied synchronously
through ReconciliationService.

Usage:
    # In urls.py
    from authorized_payments.webhooks.views import gateway_webhook

    urlpatterns = [
        path("webhooks/gateway/", gateway_webhook, name="gateway_webhook"),
    ]
"""
