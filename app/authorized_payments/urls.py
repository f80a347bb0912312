"""
URL configuration for the authorized payments app.

Routes:
    - POST webhooks/gateway/ - Gateway notification endpoint
    - authorizations/ and charges/ - Staff API (see api.views)

All routes are prefixed with /api/v1/authorized-payments/ when included
in the main URLconf.
"""

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from authorized_payments.api.views import AuthorizationViewSet, ChargeViewSet
from authorized_payments.webhooks.views import gateway_webhook

router = DefaultRouter()
router.register(r"authorizations", AuthorizationViewSet, basename="authorization")
router.register(r"charges", ChargeViewSet, basename="charge")

app_name = "authorized_payments"

urlpatterns = [
    path("webhooks/gateway/", gateway_webhook, name="gateway_webhook"),
    path("", include(router.urls)),
]
