"""
ViewSets for the authorized payments staff API.

URL Structure:
    /api/v1/authorized-payments/authorizations/                GET, POST
    /api/v1/authorized-payments/authorizations/expiring/       GET
    /api/v1/authorized-payments/authorizations/{id}/           GET
    /api/v1/authorized-payments/authorizations/{id}/charge/    POST
    /api/v1/authorized-payments/authorizations/{id}/cancel/    POST
    /api/v1/authorized-payments/charges/                       GET
    /api/v1/authorized-payments/charges/{id}/                  GET
    /api/v1/authorized-payments/charges/{id}/refund/           POST

Every state change goes through the service layer. Failed service
results are mapped to HTTP statuses by error kind.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django_filters.rest_framework import DjangoFilterBackend
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import (
    OpenApiParameter,
    OpenApiResponse,
    extend_schema,
    extend_schema_view,
)
from rest_framework import status, viewsets
from rest_framework.authentication import SessionAuthentication
from rest_framework.decorators import action
from rest_framework.permissions import IsAdminUser
from rest_framework.response import Response

from core.exceptions import ConflictError, NotFoundError, ValidationError

from authorized_payments.adapters import get_gateway
from authorized_payments.api.filters import AuthorizationFilter, ChargeFilter
from authorized_payments.api.serializers import (
    AuthorizationCreateSerializer,
    AuthorizationSerializer,
    ChargeCreateSerializer,
    ChargeSerializer,
    ErrorSerializer,
    RefundSerializer,
)
from authorized_payments.config import PaymentsConfig
from authorized_payments.exceptions import AuthorizedPaymentError, GatewayError
from authorized_payments.models import Authorization, Charge
from authorized_payments.services import AuthorizationService, ChargeService

if TYPE_CHECKING:
    from core.services import ServiceResult


def error_status(result: ServiceResult) -> int:
    """HTTP status for a failed ServiceResult."""
    exc = result.exception
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, ConflictError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, GatewayError):
        if exc.is_retryable:
            return status.HTTP_503_SERVICE_UNAVAILABLE
        return status.HTTP_502_BAD_GATEWAY
    if isinstance(exc, AuthorizedPaymentError):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    return status.HTTP_400_BAD_REQUEST


def error_response(result: ServiceResult) -> Response:
    body = {"error": result.error, "error_code": result.error_code}
    if result.details:
        body["details"] = result.details
    return Response(body, status=error_status(result))


class ServiceMixin:
    """Builds services against the configured gateway once per request."""

    def get_config(self) -> PaymentsConfig:
        if not hasattr(self, "_payments_config"):
            self._payments_config = PaymentsConfig.from_settings()
        return self._payments_config

    def get_gateway(self):
        return get_gateway(self.get_config().gateway)

    def authorization_service(self) -> AuthorizationService:
        return AuthorizationService(gateway=self.get_gateway(), config=self.get_config())

    def charge_service(self) -> ChargeService:
        return ChargeService(gateway=self.get_gateway(), config=self.get_config())


@extend_schema_view(
    list=extend_schema(
        operation_id="list_authorizations",
        summary="List authorizations",
        tags=["Authorized Payments - Authorizations"],
    ),
    retrieve=extend_schema(
        operation_id="get_authorization",
        summary="Get authorization",
        tags=["Authorized Payments - Authorizations"],
    ),
)
class AuthorizationViewSet(ServiceMixin, viewsets.ReadOnlyModelViewSet):
    """
    Staff operations on authorizations.

    create:
        Validate the request, store a PENDING authorization and ask the
        gateway to send it to the customer's wallet.

    expiring:
        ACTIVE authorizations whose validity ends within `days` (default 30).

    charge:
        Draw an amount against an ACTIVE authorization.

    cancel:
        Merchant-side cancellation of an ACTIVE authorization.
    """

    serializer_class = AuthorizationSerializer
    authentication_classes = [SessionAuthentication]
    permission_classes = [IsAdminUser]
    filter_backends = [DjangoFilterBackend]
    filterset_class = AuthorizationFilter

    def get_queryset(self):
        return Authorization.objects.all()

    @extend_schema(
        operation_id="create_authorization",
        summary="Request a new authorization",
        tags=["Authorized Payments - Authorizations"],
        request=AuthorizationCreateSerializer,
        responses={
            201: AuthorizationSerializer,
            400: OpenApiResponse(ErrorSerializer, description="Invalid request"),
            409: OpenApiResponse(ErrorSerializer, description="Duplicate merchant reference"),
            502: OpenApiResponse(ErrorSerializer, description="Gateway rejected the request"),
        },
    )
    def create(self, request):
        serializer = AuthorizationCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = self.authorization_service().create(serializer.to_request())
        if not result.success:
            return error_response(result)

        return Response(
            AuthorizationSerializer(result.data).data,
            status=status.HTTP_201_CREATED,
        )

    @extend_schema(
        operation_id="list_expiring_authorizations",
        summary="List authorizations expiring soon",
        tags=["Authorized Payments - Authorizations"],
        parameters=[OpenApiParameter("days", OpenApiTypes.INT, default=30)],
        responses={200: AuthorizationSerializer(many=True)},
    )
    @action(detail=False, methods=["get"])
    def expiring(self, request):
        try:
            days = int(request.query_params.get("days", 30))
        except ValueError:
            return Response(
                {"error": "days must be an integer", "error_code": "VALIDATION_ERROR"},
                status=status.HTTP_400_BAD_REQUEST,
            )
        authorizations = self.authorization_service().list_expiring(days=days)
        return Response(AuthorizationSerializer(authorizations, many=True).data)

    @extend_schema(
        operation_id="charge_authorization",
        summary="Charge an authorization",
        tags=["Authorized Payments - Charges"],
        request=ChargeCreateSerializer,
        responses={
            201: ChargeSerializer,
            409: OpenApiResponse(ErrorSerializer, description="Authorization state changed"),
            422: OpenApiResponse(
                ErrorSerializer, description="Not active, expired, over limit or declined"
            ),
        },
    )
    @action(detail=True, methods=["post"])
    def charge(self, request, pk=None):
        authorization = self.get_object()
        serializer = ChargeCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = self.charge_service().initiate(
            authorization,
            amount=serializer.validated_data["amount"],
            description=serializer.validated_data.get("description"),
        )
        if not result.success:
            return error_response(result)

        return Response(ChargeSerializer(result.data).data, status=status.HTTP_201_CREATED)

    @extend_schema(
        operation_id="cancel_authorization",
        summary="Cancel an authorization",
        tags=["Authorized Payments - Authorizations"],
        request=None,
        responses={
            200: AuthorizationSerializer,
            409: OpenApiResponse(ErrorSerializer, description="Authorization is not active"),
        },
    )
    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        authorization = self.get_object()

        result = self.authorization_service().cancel(authorization)
        if not result.success:
            return error_response(result)

        return Response(AuthorizationSerializer(result.data).data)


@extend_schema_view(
    list=extend_schema(
        operation_id="list_charges",
        summary="List charges",
        tags=["Authorized Payments - Charges"],
    ),
    retrieve=extend_schema(
        operation_id="get_charge",
        summary="Get charge",
        tags=["Authorized Payments - Charges"],
    ),
)
class ChargeViewSet(ServiceMixin, viewsets.ReadOnlyModelViewSet):
    """Staff read access to charges, plus refunds."""

    serializer_class = ChargeSerializer
    authentication_classes = [SessionAuthentication]
    permission_classes = [IsAdminUser]
    filter_backends = [DjangoFilterBackend]
    filterset_class = ChargeFilter

    def get_queryset(self):
        return Charge.objects.select_related("authorization")

    @extend_schema(
        operation_id="refund_charge",
        summary="Refund a charge",
        tags=["Authorized Payments - Charges"],
        request=RefundSerializer,
        responses={
            200: ChargeSerializer,
            400: OpenApiResponse(ErrorSerializer, description="Invalid refund amount"),
            422: OpenApiResponse(ErrorSerializer, description="Not refundable or refund failed"),
        },
    )
    @action(detail=True, methods=["post"])
    def refund(self, request, pk=None):
        charge = self.get_object()
        serializer = RefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = self.charge_service().refund(charge, amount=serializer.validated_data.get("amount"))
        if not result.success:
            return error_response(result)

        return Response(ChargeSerializer(result.data).data)
