"""
Pytest fixtures for the approval kernel test suite.

Provides:
- SQLite-backed session factories (in-memory per test, or file-backed
  for tests that need several independent connections)
- A fixture org directory and policy table small enough to reason about
- Recording / failing notification ports
- Structured log capture
"""

import json
import logging
from io import StringIO

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from approval_kernel.db.engine import create_tables
from approval_kernel.domain.clock import DeterministicClock
from approval_kernel.domain.org import (
    Department,
    Person,
    Position,
    ReportsTo,
    StaticOrgDirectory,
)
from approval_kernel.domain.policy import (
    ApprovalConfiguration,
    ApprovalPolicy,
    PolicyKey,
    ResolverStrategy,
)
from approval_kernel.exceptions import NotificationError
from approval_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from approval_kernel.services.workflow_engine import WorkflowEngine


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture approval_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, engine):
            engine.assign(...)
            logs = captured_logs()
            assert any(r["message"] == "chain_assigned" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("approval_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Org directory and policies
# =============================================================================

TOP_EXEC = Person("Tom Top", "tom.top@corp.test", "Head of Business", "Executive")
FINANCE = Person("Fiona Funds", "fiona.funds@corp.test", "Finance", "Finance")

DEPT_HEAD_EMAIL = "dana.head@corp.test"
SUPERVISOR_EMAIL = "sam.super@corp.test"


def build_directory() -> StaticOrgDirectory:
    """
    Fixture org chart.

    Technical:
        Dana Head (head, reports to President)
        Sam Super      Supervisor   -> department head
        Tina Tech      Technician   -> Supervisor
        Cody Coord     Coordinator  -> "Head of Technical" (no such position)
        Lou Loop       Loop A       -> Loop B
        Lee Loop       Loop B       -> Loop A
        Nina Nowhere   Drifter      -> "Ghost Position"
    Finance:
        Frank Ledger (head)
        Fiona Funds    Finance Officer -> department head
    Executive:
        Tom Top (head)
    """
    technical_head = Person("Dana Head", DEPT_HEAD_EMAIL, "Technical Director", "Technical")

    def occupant(name, email, title, department="Technical"):
        return Person(name, email, title, department)

    technical = Department(
        name="Technical",
        head=technical_head,
        head_reports_to=ReportsTo.top("President"),
        positions=(
            Position("Supervisor", occupant("Sam Super", SUPERVISOR_EMAIL, "Supervisor"),
                     ReportsTo.department_head()),
            Position("Technician", occupant("Tina Tech", "tina.tech@corp.test", "Technician"),
                     ReportsTo.position("Supervisor")),
            Position("Coordinator", occupant("Cody Coord", "cody.coord@corp.test", "Coordinator"),
                     ReportsTo.position("Head of Technical")),
            Position("Loop A", occupant("Lou Loop", "lou.loop@corp.test", "Loop A"),
                     ReportsTo.position("Loop B")),
            Position("Loop B", occupant("Lee Loop", "lee.loop@corp.test", "Loop B"),
                     ReportsTo.position("Loop A")),
            Position("Drifter", occupant("Nina Nowhere", "nina.nowhere@corp.test", "Drifter"),
                     ReportsTo.position("Ghost Position")),
        ),
    )
    finance = Department(
        name="Finance",
        head=Person("Frank Ledger", "frank.ledger@corp.test", "Finance Head", "Finance"),
        positions=(
            Position("Finance Officer", FINANCE, ReportsTo.department_head()),
        ),
    )
    executive = Department(
        name="Executive",
        head=Person(TOP_EXEC.name, TOP_EXEC.email, "President", "Executive"),
    )
    return StaticOrgDirectory((executive, technical, finance), top_role="President")


def dept_head_approver() -> Person:
    return Person("Dana Head", DEPT_HEAD_EMAIL, "Departmental Head", "Technical")


def build_policies() -> dict[PolicyKey, ApprovalPolicy]:
    head = dept_head_approver()
    return {
        PolicyKey.CASH_REQUEST: ApprovalPolicy(
            key=PolicyKey.CASH_REQUEST,
            strategy=ResolverStrategy.SUPERVISOR_WALK,
            subject_type="cash_request",
            finance=FINANCE,
            top_executive=TOP_EXEC,
        ),
        # No top executive: a technician resolves to Supervisor -> Head -> Finance.
        PolicyKey.USER_HIERARCHY: ApprovalPolicy(
            key=PolicyKey.USER_HIERARCHY,
            strategy=ResolverStrategy.SUPERVISOR_WALK,
            subject_type="user_provisioning",
            finance=FINANCE,
        ),
        PolicyKey.SUPPLIER_INVOICE: ApprovalPolicy(
            key=PolicyKey.SUPPLIER_INVOICE,
            strategy=ResolverStrategy.TABLE_LOOKUP,
            subject_type="supplier_invoice",
            finance=FINANCE,
            required_levels=3,
            aliases={"Tech": "Technical"},
            routes={
                "Technical": (head, TOP_EXEC),
                "Short": (TOP_EXEC,),
            },
        ),
        PolicyKey.SUPPLIER_ONBOARDING: ApprovalPolicy(
            key=PolicyKey.SUPPLIER_ONBOARDING,
            strategy=ResolverStrategy.TABLE_LOOKUP,
            subject_type="supplier_onboarding",
            finance=FINANCE,
            aliases={"Construction": "Project"},
            fallback_route="General",
            routes={
                "Project": (head, TOP_EXEC, FINANCE),
                "General": (TOP_EXEC,),
            },
        ),
    }


@pytest.fixture
def org_directory() -> StaticOrgDirectory:
    return build_directory()


@pytest.fixture
def policies() -> dict[PolicyKey, ApprovalPolicy]:
    return build_policies()


@pytest.fixture
def approval_config(org_directory, policies) -> ApprovalConfiguration:
    return ApprovalConfiguration(
        directory=org_directory, policies=policies, config_id="fixture",
    )


# =============================================================================
# Notification ports
# =============================================================================


class RecordingNotifier:
    """Collects every notification the engine sends."""

    def __init__(self):
        self.activated: list[tuple[str, int, str]] = []
        self.terminal: list[tuple[str, str]] = []

    def notify_activated(self, step, subject):
        self.activated.append((subject.subject_id, step.level, step.approver.email))

    def notify_terminal(self, chain, subject):
        self.terminal.append((subject.subject_id, chain.overall_status.value))


class FailingNotifier(RecordingNotifier):
    """Raises on every send until ``fail`` is switched off."""

    def __init__(self):
        super().__init__()
        self.fail = True
        self.attempts = 0

    def notify_activated(self, step, subject):
        self.attempts += 1
        if self.fail:
            raise NotificationError(step.approver.email, "smtp unavailable")
        super().notify_activated(step, subject)

    def notify_terminal(self, chain, subject):
        self.attempts += 1
        if self.fail:
            raise NotificationError(None, "smtp unavailable")
        super().notify_terminal(chain, subject)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def failing_notifier() -> FailingNotifier:
    return FailingNotifier()


# =============================================================================
# Database fixtures
# =============================================================================


def _enable_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest.fixture
def db_engine():
    """In-memory SQLite shared across the test's sessions."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(engine, "connect", _enable_foreign_keys)
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def file_db_engine(tmp_path):
    """File-backed SQLite: every session gets its own connection."""
    engine = create_engine(f"sqlite:///{tmp_path / 'approvals.db'}")
    event.listen(engine, "connect", _enable_foreign_keys)
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock()


@pytest.fixture
def engine(session_factory, approval_config, notifier, deterministic_clock) -> WorkflowEngine:
    return WorkflowEngine(
        session_factory,
        approval_config,
        notifier=notifier,
        clock=deterministic_clock,
    )
