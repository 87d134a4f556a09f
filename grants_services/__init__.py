"""
Application services for grant proposals.

Coordinates the grants_kernel domain and persistence adapters: proposal
use cases, event publishing and configuration-driven wiring.
"""

from grants_services.bootstrap import build_proposal_service, build_publisher
from grants_services.event_publisher import (
    EventPublisher,
    FireAndForgetPublisher,
    LoggingEventSink,
    NullEventPublisher,
)
from grants_services.proposal_service import CreateProposalInput, ProposalService

__all__ = [
    "CreateProposalInput",
    "EventPublisher",
    "FireAndForgetPublisher",
    "LoggingEventSink",
    "NullEventPublisher",
    "ProposalService",
    "build_proposal_service",
    "build_publisher",
]
