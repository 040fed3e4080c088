"""
Tests for the subject / step ORM mapping.

Tests cover:
- DTO round trip through apply_chain / to_dto
- Version column increments on every subject update
- Uniqueness of subject_id and (subject, cycle, level)
- Timestamps come back timezone-aware
"""

from datetime import timezone

import pytest
from sqlalchemy.exc import IntegrityError

from approval_engines.chain_state import assign_chain, decide_step
from approval_kernel.db.engine import session_scope
from approval_kernel.domain.approval import ApprovalChain, ChainStatus, SubjectStatus
from approval_kernel.domain.org import Person
from approval_kernel.models.approval_subject import ApprovalStepModel, ApprovalSubjectModel
from approval_kernel.selectors.subject_selector import SubjectSelector

APPROVERS = [
    Person("Sam Super", "sam.super@corp.test", "Supervisor", "Technical"),
    Person("Fiona Funds", "fiona.funds@corp.test", "Finance", "Finance"),
]


def new_subject(subject_id, now):
    return ApprovalSubjectModel(
        subject_type="cash_request",
        subject_id=subject_id,
        policy_key="cash_request",
        approval_status=SubjectStatus.PENDING_ASSIGNMENT.value,
        current_approval_level=0,
        cycle=1,
        created_at=now,
        updated_at=now,
    )


@pytest.fixture
def stored(session_factory, deterministic_clock):
    now = deterministic_clock.now()
    with session_scope(session_factory) as session:
        model = new_subject("CR-1", now)
        session.add(model)
        chain = assign_chain(model.chain_dto(), APPROVERS, now, "CR-1").chain
        model.apply_chain(chain, now)
    return "CR-1"


def test_round_trip(session_factory, stored, deterministic_clock):
    with session_scope(session_factory) as session:
        subject = SubjectSelector(session).get(stored)

    assert subject.version == 1
    assert subject.approval_status == SubjectStatus.IN_PROGRESS
    assert [s.approver for s in subject.chain.steps] == APPROVERS
    assert subject.chain.steps[0].activated_timestamp == deterministic_clock.now()
    assert subject.created_at.tzinfo is not None
    assert subject.created_at.utcoffset() == timezone.utc.utcoffset(None)


def test_version_increments_on_transition(session_factory, stored, deterministic_clock):
    with session_scope(session_factory) as session:
        model = SubjectSelector(session).get_model(stored)
        transition = decide_step(
            model.chain_dto(), "sam.super@corp.test", "approved", None,
            deterministic_clock.tick(), stored,
        )
        model.apply_chain(transition.chain, deterministic_clock.now())

    with session_scope(session_factory) as session:
        subject = SubjectSelector(session).get(stored)
    assert subject.version == 2
    assert subject.chain.current_level == 2


def test_past_cycle_chain_is_closed(session_factory, stored, deterministic_clock):
    with session_scope(session_factory) as session:
        model = SubjectSelector(session).get_model(stored)
        transition = decide_step(
            model.chain_dto(), "sam.super@corp.test", "rejected", "no", deterministic_clock.now(), stored,
        )
        model.apply_chain(transition.chain, deterministic_clock.now())
        model.cycle = 2
        model.approval_status = SubjectStatus.PENDING_ASSIGNMENT.value

    with session_scope(session_factory) as session:
        selector = SubjectSelector(session)
        assert selector.get_chain(stored, cycle=1).overall_status == ChainStatus.REJECTED
        assert selector.get_chain(stored).overall_status == ChainStatus.NOT_STARTED
        assert selector.get_chain("missing") is None


def test_duplicate_subject_id_is_refused(session_factory, stored, deterministic_clock):
    with pytest.raises(IntegrityError):
        with session_scope(session_factory) as session:
            session.add(new_subject(stored, deterministic_clock.now()))


def test_duplicate_step_level_is_refused(session_factory, stored):
    with pytest.raises(IntegrityError):
        with session_scope(session_factory) as session:
            model = SubjectSelector(session).get_model(stored)
            session.add(ApprovalStepModel(
                subject_pk=model.id, cycle=1, level=1,
                approver_name="X", approver_email="x@corp.test",
                approver_role="Supervisor", approver_department="Technical",
            ))


def test_list_by_status(session_factory, stored, deterministic_clock):
    with session_scope(session_factory) as session:
        session.add(new_subject("CR-2", deterministic_clock.now()))

    with session_scope(session_factory) as session:
        selector = SubjectSelector(session)
        in_progress = selector.list_by_status(SubjectStatus.IN_PROGRESS)
        waiting = selector.list_by_status(SubjectStatus.PENDING_ASSIGNMENT, subject_type="cash_request")
    assert [s.subject_id for s in in_progress] == ["CR-1"]
    assert [s.subject_id for s in waiting] == ["CR-2"]
