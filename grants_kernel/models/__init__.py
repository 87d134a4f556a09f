"""ORM models for the grants kernel."""

from grants_kernel.models.proposal import ProposalModel, ProposalTransitionModel

__all__ = [
    "ProposalModel",
    "ProposalTransitionModel",
]
