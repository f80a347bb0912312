import django_filters as filters

from authorized_payments.models import Authorization, Charge
from authorized_payments.state_machines import AuthorizationStatus, ChargeStatus


class AuthorizationFilter(filters.FilterSet):
    status = filters.ChoiceFilter(choices=AuthorizationStatus.choices)
    customer_email = filters.CharFilter(lookup_expr="iexact")
    customer_phone = filters.CharFilter()

    class Meta:
        model = Authorization
        fields = ["status", "customer_email", "customer_phone"]


class ChargeFilter(filters.FilterSet):
    authorization = filters.UUIDFilter(field_name="authorization_id")
    status = filters.ChoiceFilter(choices=ChargeStatus.choices)

    class Meta:
        model = Charge
        fields = ["authorization", "status"]
