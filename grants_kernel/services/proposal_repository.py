"""
Module: grants_kernel.services.proposal_repository
Responsibility: Persistence port for the proposal aggregate and its two
    adapters: an in-process store for tests and single-process tools, and
    a SQLAlchemy store for real databases.

Architecture position: Kernel > Services.  May import from domain/,
    models/, db/.

Invariants enforced:
    - Compare-and-swap: ``save(proposal, expected_version=n)`` succeeds only
      if the stored version is still ``n`` and the stored revision is still
      the one the proposal was loaded at.  Of two writers that loaded the
      same row, exactly one persists; the other gets VersionConflictError
      and must reload.  A successful save bumps ``proposal.revision``.
    - History rows are only inserted, numbered by the version they produced
      minus one (see models/proposal.py).
    - Reads return detached aggregates: mutating a loaded proposal never
      changes the stored one until it is saved.

Failure modes:
    - VersionConflictError on a stale expected_version, or on inserting a
      proposal id that already exists.
    - ProposalNotFoundError when updating or deleting a missing proposal.
"""

from __future__ import annotations

import copy
import threading
from collections import Counter
from datetime import datetime, timezone
from typing import Protocol, Sequence
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from grants_kernel.domain.proposal import (
    Attachment,
    KeyPerson,
    Proposal,
    StateTransitionRecord,
)
from grants_kernel.domain.proposal_workflow import (
    ProposalState,
    ProposalTransition,
    get_proposal_state_machine,
)
from grants_kernel.domain.state_machine import StateMachine
from grants_kernel.exceptions import ProposalNotFoundError, VersionConflictError
from grants_kernel.logging_config import get_logger
from grants_kernel.models.proposal import ProposalModel, ProposalTransitionModel

logger = get_logger("services.proposal_repository")


class ProposalRepository(Protocol):
    """Storage port used by ProposalService."""

    def save(self, proposal: Proposal, expected_version: int | None = None) -> None:
        """Insert (``expected_version=None``) or compare-and-swap update."""
        ...

    def find_by_id(self, tenant_id: UUID, proposal_id: UUID) -> Proposal | None:
        ...

    def delete(self, tenant_id: UUID, proposal_id: UUID) -> None:
        ...

    def list(self, tenant_id: UUID, state: ProposalState | None = None) -> Sequence[Proposal]:
        ...

    def count_by_state(self, tenant_id: UUID) -> dict[ProposalState, int]:
        ...


# =============================================================================
# In-memory adapter
# =============================================================================


class InMemoryProposalRepository:
    """Dictionary-backed repository guarded by a single lock.

    Aggregates are deep-copied on the way in and on the way out.  The shared
    state machine is carried over by reference: it holds a lock and is
    immutable after construction.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._proposals: dict[UUID, Proposal] = {}

    @staticmethod
    def _copy(proposal: Proposal) -> Proposal:
        clone = copy.deepcopy(
            proposal, memo={id(proposal.state_machine): proposal.state_machine}
        )
        clone.clear_uncommitted_events()
        return clone

    def save(self, proposal: Proposal, expected_version: int | None = None) -> None:
        with self._lock:
            stored = self._proposals.get(proposal.id)
            if expected_version is None:
                if stored is not None:
                    raise VersionConflictError("Proposal", proposal.id, 0, stored.version)
            else:
                if stored is None or stored.tenant_id != proposal.tenant_id:
                    raise ProposalNotFoundError(proposal.id)
                if stored.version != expected_version:
                    raise VersionConflictError(
                        "Proposal", proposal.id, expected_version, stored.version
                    )
                if stored.revision != proposal.revision:
                    raise VersionConflictError(
                        "Proposal", proposal.id, expected_version, stored.version,
                        expected_revision=proposal.revision,
                        actual_revision=stored.revision,
                    )
                proposal.revision += 1
            self._proposals[proposal.id] = self._copy(proposal)

    def find_by_id(self, tenant_id: UUID, proposal_id: UUID) -> Proposal | None:
        with self._lock:
            stored = self._proposals.get(proposal_id)
            if stored is None or stored.tenant_id != tenant_id:
                return None
            return self._copy(stored)

    def delete(self, tenant_id: UUID, proposal_id: UUID) -> None:
        with self._lock:
            stored = self._proposals.get(proposal_id)
            if stored is None or stored.tenant_id != tenant_id:
                raise ProposalNotFoundError(proposal_id)
            del self._proposals[proposal_id]

    def list(self, tenant_id: UUID, state: ProposalState | None = None) -> Sequence[Proposal]:
        with self._lock:
            matches = [
                p for p in self._proposals.values()
                if p.tenant_id == tenant_id and (state is None or p.state is state)
            ]
            matches.sort(key=lambda p: (p.created_at, p.proposal_number))
            return [self._copy(p) for p in matches]

    def count_by_state(self, tenant_id: UUID) -> dict[ProposalState, int]:
        with self._lock:
            return dict(Counter(
                p.state for p in self._proposals.values() if p.tenant_id == tenant_id
            ))


# =============================================================================
# SQLAlchemy adapter
# =============================================================================


def _aware(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; stored timestamps are always UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _key_person_to_json(person: KeyPerson) -> dict:
    return {
        "person_id": str(person.person_id),
        "role": person.role,
        "effort": person.effort,
        "calendar_months": person.calendar_months,
        "academic_months": person.academic_months,
        "summer_months": person.summer_months,
    }


def _key_person_from_json(data: dict) -> KeyPerson:
    return KeyPerson(
        person_id=UUID(data["person_id"]),
        role=data["role"],
        effort=data["effort"],
        calendar_months=data.get("calendar_months", 0.0),
        academic_months=data.get("academic_months", 0.0),
        summer_months=data.get("summer_months", 0.0),
    )


def _attachment_to_json(attachment: Attachment) -> dict:
    return {
        "id": str(attachment.id),
        "file_name": attachment.file_name,
        "file_type": attachment.file_type,
        "file_size_bytes": attachment.file_size_bytes,
        "storage_path": attachment.storage_path,
        "category": attachment.category,
        "uploaded_by": str(attachment.uploaded_by) if attachment.uploaded_by else None,
        "uploaded_at": attachment.uploaded_at.isoformat() if attachment.uploaded_at else None,
    }


def _attachment_from_json(data: dict) -> Attachment:
    return Attachment(
        id=UUID(data["id"]),
        file_name=data["file_name"],
        file_type=data["file_type"],
        file_size_bytes=data["file_size_bytes"],
        storage_path=data["storage_path"],
        category=data["category"],
        uploaded_by=UUID(data["uploaded_by"]) if data.get("uploaded_by") else None,
        uploaded_at=datetime.fromisoformat(data["uploaded_at"]) if data.get("uploaded_at") else None,
    )


def _mutable_columns(proposal: Proposal) -> dict:
    """Column values that may change after the proposal is created."""
    return {
        "title": proposal.title,
        "short_title": proposal.short_title,
        "abstract": proposal.abstract,
        "external_id": proposal.external_id,
        "research_area": proposal.research_area,
        "keywords": list(proposal.keywords),
        "sponsor_deadline": proposal.sponsor_deadline,
        "internal_deadline": proposal.internal_deadline,
        "state": proposal.state.value,
        "version": proposal.version,
        "co_investigator_ids": [str(c) for c in proposal.co_investigator_ids],
        "key_personnel": [_key_person_to_json(k) for k in proposal.key_personnel],
        "attachments": [_attachment_to_json(a) for a in proposal.attachments],
        "irb_required": proposal.irb_required,
        "iacuc_required": proposal.iacuc_required,
        "ibc_required": proposal.ibc_required,
        "export_control": proposal.export_control,
        "conflict_of_interest": proposal.conflict_of_interest,
        "updated_at": proposal.updated_at or proposal.created_at,
        "updated_by_id": proposal.updated_by,
    }


def _transition_rows(
    proposal: Proposal, first_sequence: int
) -> list[ProposalTransitionModel]:
    records = proposal.transition_history[first_sequence - 1:]
    return [
        ProposalTransitionModel(
            proposal_id=proposal.id,
            sequence=sequence,
            from_state=record.from_state.value,
            to_state=record.to_state.value,
            transition=record.transition.value,
            actor_id=record.actor_id,
            performed_at=record.performed_at,
            comment=record.comment,
        )
        for sequence, record in enumerate(records, start=first_sequence)
    ]


class SqlAlchemyProposalRepository:
    """Repository over ``proposals`` / ``proposal_transitions``.

    Every call runs in its own short transaction opened from
    ``session_factory``, so one instance may be shared across threads.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        state_machine: StateMachine[ProposalState, ProposalTransition] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._state_machine = state_machine or get_proposal_state_machine()

    def _from_model(self, model: ProposalModel) -> Proposal:
        history = tuple(
            StateTransitionRecord(
                from_state=ProposalState(row.from_state),
                to_state=ProposalState(row.to_state),
                transition=ProposalTransition(row.transition),
                actor_id=row.actor_id,
                performed_at=_aware(row.performed_at),
                comment=row.comment,
            )
            for row in model.transitions
        )
        return Proposal(
            id=model.id,
            tenant_id=model.tenant_id,
            proposal_number=model.proposal_number,
            owner_id=model.owner_id,
            sponsor_id=model.sponsor_id,
            title=model.title,
            short_title=model.short_title,
            abstract=model.abstract,
            external_id=model.external_id,
            department=model.department,
            research_area=model.research_area,
            keywords=tuple(model.keywords),
            project_start=model.project_start,
            project_end=model.project_end,
            sponsor_deadline=_aware(model.sponsor_deadline),
            internal_deadline=_aware(model.internal_deadline),
            state=ProposalState(model.state),
            version=model.version,
            revision=model.revision,
            co_investigator_ids=tuple(UUID(c) for c in model.co_investigator_ids),
            key_personnel=tuple(_key_person_from_json(k) for k in model.key_personnel),
            attachments=tuple(_attachment_from_json(a) for a in model.attachments),
            irb_required=model.irb_required,
            iacuc_required=model.iacuc_required,
            ibc_required=model.ibc_required,
            export_control=model.export_control,
            conflict_of_interest=model.conflict_of_interest,
            transition_history=history,
            created_at=_aware(model.created_at),
            created_by=model.created_by_id,
            updated_at=_aware(model.updated_at),
            updated_by=model.updated_by_id,
            state_machine=self._state_machine,
        )

    def save(self, proposal: Proposal, expected_version: int | None = None) -> None:
        with self._session_factory() as session, session.begin():
            if expected_version is None:
                self._insert(session, proposal)
            else:
                self._compare_and_swap(session, proposal, expected_version)
        if expected_version is not None:
            proposal.revision += 1

    def _insert(self, session: Session, proposal: Proposal) -> None:
        session.add(ProposalModel(
            id=proposal.id,
            tenant_id=proposal.tenant_id,
            proposal_number=proposal.proposal_number,
            owner_id=proposal.owner_id,
            sponsor_id=proposal.sponsor_id,
            department=proposal.department,
            project_start=proposal.project_start,
            project_end=proposal.project_end,
            created_at=proposal.created_at,
            created_by_id=proposal.created_by,
            revision=proposal.revision,
            **_mutable_columns(proposal),
        ))
        session.add_all(_transition_rows(proposal, first_sequence=1))
        try:
            session.flush()
        except IntegrityError as exc:
            raise VersionConflictError("Proposal", proposal.id, 0) from exc

    def _compare_and_swap(
        self, session: Session, proposal: Proposal, expected_version: int
    ) -> None:
        result = session.execute(
            update(ProposalModel)
            .where(
                ProposalModel.id == proposal.id,
                ProposalModel.tenant_id == proposal.tenant_id,
                ProposalModel.version == expected_version,
                ProposalModel.revision == proposal.revision,
            )
            .values(revision=proposal.revision + 1, **_mutable_columns(proposal))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            stored = session.execute(
                select(ProposalModel.version, ProposalModel.revision).where(
                    ProposalModel.id == proposal.id,
                    ProposalModel.tenant_id == proposal.tenant_id,
                )
            ).one_or_none()
            if stored is None:
                raise ProposalNotFoundError(proposal.id)
            actual_version, actual_revision = stored
            logger.info(
                "proposal_version_conflict",
                extra={
                    "proposal_id": str(proposal.id),
                    "expected_version": expected_version,
                    "actual_version": actual_version,
                    "expected_revision": proposal.revision,
                    "actual_revision": actual_revision,
                },
            )
            if actual_version != expected_version:
                raise VersionConflictError(
                    "Proposal", proposal.id, expected_version, actual_version
                )
            raise VersionConflictError(
                "Proposal", proposal.id, expected_version, actual_version,
                expected_revision=proposal.revision,
                actual_revision=actual_revision,
            )

        session.add_all(_transition_rows(proposal, first_sequence=expected_version))
        try:
            session.flush()
        except IntegrityError as exc:
            raise VersionConflictError("Proposal", proposal.id, expected_version) from exc

    def find_by_id(self, tenant_id: UUID, proposal_id: UUID) -> Proposal | None:
        with self._session_factory() as session:
            model = session.scalar(
                select(ProposalModel)
                .options(selectinload(ProposalModel.transitions))
                .where(ProposalModel.id == proposal_id, ProposalModel.tenant_id == tenant_id)
            )
            return self._from_model(model) if model is not None else None

    def delete(self, tenant_id: UUID, proposal_id: UUID) -> None:
        """Remove a proposal together with its history rows.

        Uses bulk DELETE statements: the per-row immutability listeners on
        history guard against piecemeal edits, not whole-proposal removal.
        """
        with self._session_factory() as session, session.begin():
            exists = session.scalar(
                select(ProposalModel.id).where(
                    ProposalModel.id == proposal_id, ProposalModel.tenant_id == tenant_id
                )
            )
            if exists is None:
                raise ProposalNotFoundError(proposal_id)
            session.execute(
                delete(ProposalTransitionModel)
                .where(ProposalTransitionModel.proposal_id == proposal_id)
                .execution_options(synchronize_session=False)
            )
            session.execute(
                delete(ProposalModel)
                .where(ProposalModel.id == proposal_id)
                .execution_options(synchronize_session=False)
            )

    def list(self, tenant_id: UUID, state: ProposalState | None = None) -> Sequence[Proposal]:
        stmt = (
            select(ProposalModel)
            .options(selectinload(ProposalModel.transitions))
            .where(ProposalModel.tenant_id == tenant_id)
            .order_by(ProposalModel.created_at, ProposalModel.proposal_number)
        )
        if state is not None:
            stmt = stmt.where(ProposalModel.state == ProposalState(state).value)
        with self._session_factory() as session:
            return [self._from_model(model) for model in session.scalars(stmt)]

    def count_by_state(self, tenant_id: UUID) -> dict[ProposalState, int]:
        with self._session_factory() as session:
            rows = session.execute(
                select(ProposalModel.state, func.count())
                .where(ProposalModel.tenant_id == tenant_id)
                .group_by(ProposalModel.state)
            )
            return {ProposalState(state): count for state, count in rows}
