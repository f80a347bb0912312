"""
Recurring pre-authorized mobile-wallet payments.

A customer grants a standing authorization (maximum amount, validity
date); the merchant draws charges against it and may refund them.
State arrives from synchronous gateway responses and from asynchronous
webhooks, and both are funnelled through the reconciliation service.
"""
