"""
Root URL configuration.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/authorized-payments/   - Authorized payments
        webhooks/gateway/          - Gateway notification endpoint (POST)
        authorizations/            - Authorization list/create
        authorizations/expiring/   - Authorizations expiring soon
        authorizations/{id}/       - Authorization detail
        authorizations/{id}/charge/ - Charge the authorization
        authorizations/{id}/cancel/ - Cancel the authorization
        charges/                   - Charge list
        charges/{id}/              - Charge detail
        charges/{id}/refund/       - Refund the charge
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check

api_v1_patterns = [
    path("authorized-payments/", include("authorized_payments.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Admin
    path("admin/", admin.site.urls),
    path("health/", health_check, name="health_check"),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]

admin.site.site_header = "Authorized Payments Admin"
admin.site.site_title = "Authorized Payments"
admin.site.index_title = "Authorizations, charges and gateway records"
