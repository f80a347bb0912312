"""
Staff REST API for authorized payments (DRF).

Routes are registered in authorized_payments.urls.
"""
