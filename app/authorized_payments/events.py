"""
Domain events and the sinks that receive them.

Services emit typed events onto the EventSink they were constructed
with. What happens next (billing, analytics, notifications) is the
sink's business.

Sinks:
    SignalEventSink: Re-broadcasts events as the domain_event Django
        signal once the surrounding transaction commits (default)
    RecordingEventSink: Keeps events in a list

Usage:
    from authorized_payments.signals import domain_event

    @receiver(domain_event)
    def on_event(sender, event, **kwargs):
        if isinstance(event, ChargeSettled):
            ...
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Protocol, runtime_checkable

from django.db import transaction
from django.utils import timezone


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    occurred_at: datetime = field(default_factory=timezone.now)


@dataclass(frozen=True, kw_only=True)
class AuthorizationCreated(DomainEvent):
    authorization_id: str
    max_amount: Decimal
    merchant_reference: str | None = None


@dataclass(frozen=True, kw_only=True)
class AuthorizationActivated(DomainEvent):
    authorization_id: str
    gateway_authorization_id: str


@dataclass(frozen=True, kw_only=True)
class AuthorizationCancelled(DomainEvent):
    authorization_id: str
    source: str  # "merchant" or "gateway"


@dataclass(frozen=True, kw_only=True)
class AuthorizationExpired(DomainEvent):
    authorization_id: str


@dataclass(frozen=True, kw_only=True)
class ChargeSettled(DomainEvent):
    charge_id: str
    authorization_id: str
    amount: Decimal
    gateway_transaction_id: str | None = None


@dataclass(frozen=True, kw_only=True)
class ChargeFailed(DomainEvent):
    charge_id: str
    authorization_id: str
    amount: Decimal
    error_message: str
    retry_count: int = 0


@dataclass(frozen=True, kw_only=True)
class ChargeRefunded(DomainEvent):
    charge_id: str
    amount: Decimal
    refunded_amount: Decimal
    status: str


@runtime_checkable
class EventSink(Protocol):
    def emit(self, event: DomainEvent) -> None: ...


class SignalEventSink:
    """Send each event as the domain_event signal after commit."""

    def emit(self, event: DomainEvent) -> None:
        from authorized_payments.signals import domain_event

        transaction.on_commit(
            lambda: domain_event.send(sender=type(event), event=event)
        )


class RecordingEventSink:
    """Keep emitted events in memory, in order."""

    def __init__(self) -> None:
        self.events: list[DomainEvent] = []

    def emit(self, event: DomainEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: type[DomainEvent]) -> list[DomainEvent]:
        return [event for event in self.events if isinstance(event, event_type)]
