"""
Append-only audit trail of order domain events.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from enum import Enum
from typing import Iterable
from uuid import UUID, uuid4

from django.db import models

from ordering.domain.events import DomainEvent, EventVersion
from ordering.infra.models import TimeStampedModel


logger = logging.getLogger(__name__)


class EventStore(TimeStampedModel):
    """Event store for domain events."""
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    aggregate_id = models.UUIDField()
    aggregate_type = models.CharField(max_length=50)
    event_type = models.CharField(max_length=100)
    event_version = models.CharField(max_length=10, default=EventVersion.V1.value)
    event_data = models.JSONField()
    sequence_number = models.BigIntegerField()
    occurred_at = models.CharField(max_length=40, blank=True, default="")

    class Meta:
        unique_together = [("aggregate_id", "aggregate_type", "sequence_number")]
        indexes = [
            models.Index(fields=("aggregate_id", "aggregate_type")),
        ]
        ordering = ["sequence_number"]


class EventStoreRepository:
    """Repository for event store."""

    def save_events(self, events: Iterable[DomainEvent], aggregate_type: str = "Order") -> int:
        """Append events in order. Must run inside the aggregate's transaction."""
        saved = 0
        for event in events:
            self.save_event(event, aggregate_type)
            saved += 1
        return saved

    def save_event(self, event: DomainEvent, aggregate_type: str = "Order") -> None:
        last_event = (
            EventStore.objects
            .filter(aggregate_id=event.aggregate_id, aggregate_type=aggregate_type)
            .order_by("-sequence_number")
            .first()
        )
        sequence_number = (last_event.sequence_number + 1) if last_event else 1

        EventStore.objects.create(
            aggregate_id=event.aggregate_id,
            aggregate_type=aggregate_type,
            event_type=event.event_type,
            event_version=event.version.value,
            event_data=self._serialize_event(event),
            sequence_number=sequence_number,
            occurred_at=event.occurred_at,
        )
        logger.debug(
            "event_stored",
            extra={"operation": event.event_type, "sequence_number": sequence_number},
        )

    def get_events(self, aggregate_id: UUID, aggregate_type: str = "Order") -> list[dict]:
        events = (
            EventStore.objects
            .filter(aggregate_id=aggregate_id, aggregate_type=aggregate_type)
            .order_by("sequence_number")
        )
        return [self._deserialize_event(e) for e in events]

    def _serialize_event(self, event: DomainEvent) -> dict:
        data = {
            "event_id": str(event.event_id),
            "aggregate_id": str(event.aggregate_id),
            "event_type": event.event_type,
            "version": event.version.value,
        }
        for key, value in event.__dict__.items():
            if key in ("event_id", "aggregate_id", "version", "occurred_at"):
                continue
            data[key] = _to_json(value)
        return data

    def _deserialize_event(self, event_orm: EventStore) -> dict:
        return {
            "id": str(event_orm.id),
            "aggregate_id": str(event_orm.aggregate_id),
            "event_type": event_orm.event_type,
            "version": event_orm.event_version,
            "data": event_orm.event_data,
            "sequence_number": event_orm.sequence_number,
            "occurred_at": event_orm.occurred_at or event_orm.created_at.isoformat(),
        }


def _to_json(value):
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): _to_json(v) for k, v in value.items()}
    return value
