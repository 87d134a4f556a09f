"""
Grants Kernel

Proposal lifecycle core for grant administration:
- Generic, concurrency-safe state machine
- 22-state grant proposal workflow
- Role-gated transitions per state
- Optimistic concurrency with an append-only transition history
"""

__version__ = "0.1.0"
