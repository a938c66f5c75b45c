"""
Expose ORM models for Django's auto-discovery while keeping real definitions
under the infrastructure module.
"""

from ordering.infra.models import *  # noqa: F401,F403
from ordering.infra.event_store import EventStore  # noqa: F401
