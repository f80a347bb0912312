"""
Django signals for authorized payments.

domain_event is sent (after commit) for every event emitted through
SignalEventSink. Receivers get the event instance as `event`.

Related files:
    - events.py: Event types and sinks
    - apps.py: Signal registration
"""

from __future__ import annotations

import logging

from django.dispatch import Signal, receiver

logger = logging.getLogger(__name__)

domain_event = Signal()


@receiver(domain_event)
def log_domain_event(sender, event, **kwargs):
    """Record every domain event in the application log."""
    logger.info(
        f"Domain event {sender.__name__}",
        extra={"event_type": sender.__name__, "event": repr(event)},
    )


def register_signals():
    """
    Register authorized payment signal receivers.

    Called from apps.py when the app is ready. Receivers above are
    connected by their decorators when this module is imported.
    """
    logger.debug("Authorized payment signals registered")
