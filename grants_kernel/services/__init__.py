"""Kernel services: persistence adapters for the proposal aggregate."""

from grants_kernel.services.proposal_repository import (
    InMemoryProposalRepository,
    ProposalRepository,
    SqlAlchemyProposalRepository,
)

__all__ = [
    "InMemoryProposalRepository",
    "ProposalRepository",
    "SqlAlchemyProposalRepository",
]
