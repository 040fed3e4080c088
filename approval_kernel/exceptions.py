"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Approval callers (HTTP handlers, batch jobs) must react differently to an
authorization failure, a stale write and a broken configuration.  Parsing
messages for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - RIGHT way:
    try:
        engine.decide(subject_id, email, Decision.APPROVED)
    except NotCurrentApproverError as e:
        api_response(code=e.code, current_approver=e.current_approver_email)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ApprovalKernelError:

    ApprovalKernelError (base)
    |
    +-- ConfigurationError
    |   +-- DepartmentNotFoundError
    |   +-- UnknownPolicyError
    |
    +-- DirectoryError
    |   +-- PersonNotFoundError
    |
    +-- ChainError
    |   +-- ChainNotFoundError
    |   +-- AlreadyAssignedError
    |   +-- AlreadyProcessedError
    |   +-- NotCurrentApproverError
    |   +-- ChainIntegrityError
    |   +-- InvalidDecisionError
    |
    +-- ConcurrencyError
    |   +-- ConflictError
    |
    +-- NotificationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Configuration   | CONFIGURATION_ERROR         | No resolvable policy / fallback role
                | DEPARTMENT_NOT_FOUND        | Unknown department and no fallback
                | UNKNOWN_POLICY              | Policy key missing from policy table
----------------|-----------------------------|-----------------------------------------
Directory       | PERSON_NOT_FOUND            | Starting person not in org directory
                |                             | (recovered internally, never surfaced)
----------------|-----------------------------|-----------------------------------------
Chain           | CHAIN_NOT_FOUND             | Subject unknown or chain never assigned
                | CHAIN_ALREADY_ASSIGNED      | assign() on a subject that has a chain
                | CHAIN_ALREADY_PROCESSED     | decide() on a terminal chain
                | NOT_CURRENT_APPROVER        | Email does not match the active step
                | CHAIN_INTEGRITY_VIOLATION   | Stored pointer disagrees with steps
                | INVALID_DECISION            | Decision is not approved/rejected
----------------|-----------------------------|-----------------------------------------
Concurrency     | APPROVAL_CONFLICT           | Concurrent write on the same subject
----------------|-----------------------------|-----------------------------------------
Notification    | NOTIFICATION_FAILED         | Port delivery failure (logged only)

===============================================================================
HANDLING PATTERNS
===============================================================================

1. AUTHORIZATION FAILURES carry the correct approver so callers can redirect:

    except NotCurrentApproverError as e:
        redirect_to(e.current_approver_email)

2. CONFLICTS are retryable -- reload and re-issue the decision:

    except ConflictError:
        retry(engine.decide, subject_id, email, decision)

3. IDEMPOTENCY GUARDS are caller errors, never retried:

    except (AlreadyAssignedError, AlreadyProcessedError) as e:
        api_response(code=e.code, status=e.status)

===============================================================================
"""


class ApprovalKernelError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "APPROVAL_KERNEL_ERROR"


# Configuration-related exceptions


class ConfigurationError(ApprovalKernelError):
    """No resolvable policy, route or fallback role exists."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, message: str, policy_key: str | None = None):
        self.policy_key = policy_key
        super().__init__(message)


class DepartmentNotFoundError(ConfigurationError):
    """Department unknown and the policy has no fallback to degrade to."""

    code: str = "DEPARTMENT_NOT_FOUND"

    def __init__(self, department: str | None, policy_key: str | None = None):
        self.department = department
        super().__init__(
            f"Department not found and no fallback configured: {department!r}",
            policy_key=policy_key,
        )


class UnknownPolicyError(ConfigurationError):
    """Policy key has no entry in the active policy table."""

    code: str = "UNKNOWN_POLICY"

    def __init__(self, policy_key: str):
        super().__init__(f"No approval policy configured for {policy_key!r}", policy_key)


# Directory-related exceptions


class DirectoryError(ApprovalKernelError):
    """Base exception for org directory lookups."""

    code: str = "DIRECTORY_ERROR"


class PersonNotFoundError(DirectoryError):
    """
    Starting person is not present in the org directory.

    Never surfaced to callers: the resolver degrades to the default chain.
    """

    code: str = "PERSON_NOT_FOUND"

    def __init__(self, name: str | None, department: str | None = None):
        self.name = name
        self.department = department
        super().__init__(f"Person not found in org directory: {name!r}")


# Chain-related exceptions


class ChainError(ApprovalKernelError):
    """Base exception for approval chain state machine errors."""

    code: str = "CHAIN_ERROR"


class ChainNotFoundError(ChainError):
    """Subject is unknown or has no assigned chain."""

    code: str = "CHAIN_NOT_FOUND"

    def __init__(self, subject_id: str, reason: str = "no approval chain"):
        self.subject_id = subject_id
        self.reason = reason
        super().__init__(f"Chain not found for subject {subject_id}: {reason}")


class AlreadyAssignedError(ChainError):
    """assign() called on a subject whose current cycle already has a chain."""

    code: str = "CHAIN_ALREADY_ASSIGNED"

    def __init__(self, subject_id: str, status: str):
        self.subject_id = subject_id
        self.status = status
        super().__init__(
            f"Subject {subject_id} already has an approval chain (status={status})"
        )


class AlreadyProcessedError(ChainError):
    """decide() called on a chain that is already approved or rejected."""

    code: str = "CHAIN_ALREADY_PROCESSED"

    def __init__(self, subject_id: str, status: str):
        self.subject_id = subject_id
        self.status = status
        super().__init__(
            f"Approval chain for subject {subject_id} is already {status}"
        )


class NotCurrentApproverError(ChainError):
    """
    The acting email does not match the active step's approver.

    Carries the identity of the correct approver so the caller can redirect.
    """

    code: str = "NOT_CURRENT_APPROVER"

    def __init__(
        self,
        subject_id: str,
        attempted_email: str,
        current_level: int,
        current_approver_name: str,
        current_approver_email: str,
    ):
        self.subject_id = subject_id
        self.attempted_email = attempted_email
        self.current_level = current_level
        self.current_approver_name = current_approver_name
        self.current_approver_email = current_approver_email
        super().__init__(
            f"{attempted_email} is not the current approver for subject "
            f"{subject_id}. Current approver: {current_approver_name} "
            f"(Level {current_level})"
        )


class ChainIntegrityError(ChainError):
    """Stored current-level pointer disagrees with the step statuses."""

    code: str = "CHAIN_INTEGRITY_VIOLATION"

    def __init__(self, subject_id: str, reason: str):
        self.subject_id = subject_id
        self.reason = reason
        super().__init__(f"Approval chain for subject {subject_id} is inconsistent: {reason}")


class InvalidDecisionError(ChainError):
    """Decision value is not one of approved/rejected."""

    code: str = "INVALID_DECISION"

    def __init__(self, decision: str):
        self.decision = decision
        super().__init__(
            f"Valid decision (approved/rejected) is required, got {decision!r}"
        )


# Concurrency-related exceptions


class ConcurrencyError(ApprovalKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConflictError(ConcurrencyError):
    """Another writer changed the subject between load and save."""

    code: str = "APPROVAL_CONFLICT"

    def __init__(self, subject_id: str):
        self.subject_id = subject_id
        super().__init__(
            f"Concurrent modification of subject {subject_id}: "
            "reload and retry the operation"
        )


# Notification-related exceptions


class NotificationError(ApprovalKernelError):
    """
    Notification port failed to deliver.

    Raised by ports; the workflow engine logs it and never propagates it.
    """

    code: str = "NOTIFICATION_FAILED"

    def __init__(self, recipient: str | None, reason: str):
        self.recipient = recipient
        self.reason = reason
        super().__init__(f"Notification to {recipient} failed: {reason}")
