"""
grants_services.bootstrap -- Wire a ProposalService from configuration.

Initializes logging and the database engine, creates tables and builds the
publisher the configuration asks for.
"""

from __future__ import annotations

from grants_config import GrantsConfig
from grants_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
)
from grants_kernel.domain.clock import Clock
from grants_kernel.logging_config import configure_logging
from grants_kernel.services.proposal_repository import SqlAlchemyProposalRepository
from grants_services.event_publisher import (
    EventPublisher,
    EventSink,
    FireAndForgetPublisher,
    LoggingEventSink,
    NullEventPublisher,
)
from grants_services.proposal_service import ProposalService


def build_publisher(config: GrantsConfig, sink: EventSink | None = None) -> EventPublisher:
    if not config.events.enabled:
        return NullEventPublisher()
    return FireAndForgetPublisher(
        sink or LoggingEventSink(),
        max_workers=config.events.publisher_workers,
    )


def build_proposal_service(
    config: GrantsConfig,
    *,
    sink: EventSink | None = None,
    clock: Clock | None = None,
) -> ProposalService:
    """Build a ready-to-use ProposalService backed by ``config.database``."""
    configure_logging(level=config.logging.level)
    init_engine_from_url(
        config.database.url,
        echo=config.database.echo,
        pool_size=config.database.pool_size,
        max_overflow=config.database.max_overflow,
    )
    create_tables()
    return ProposalService(
        SqlAlchemyProposalRepository(get_session_factory()),
        publisher=build_publisher(config, sink),
        clock=clock,
    )
