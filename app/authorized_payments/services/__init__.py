"""
Service layer for authorized payments.

Services:
    AuthorizationService: Create, approve, cancel, query authorizations
    ChargeService: Initiate (singly or in batches), settle, refund and retry charges
    ReconciliationService: Webhooks, status polls and shared transition rules
"""

from authorized_payments.services.authorization_service import AuthorizationService
from authorized_payments.services.charge_service import BatchChargeItem, ChargeService
from authorized_payments.services.reconciliation_service import ReconciliationService

__all__ = [
    "AuthorizationService",
    "BatchChargeItem",
    "ChargeService",
    "ReconciliationService",
]
