"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Approval decisions arrive from request handlers that must turn every failure
into a precise response: "you are not an approver", "this request was already
decided", "approval chain not configured".  Parsing message strings for that
is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)
  4. Every exception has a USER_MESSAGE safe to show to the actor

Example:
    try:
        orchestrator.decide(chain_id, actor_id, "manager", "approve")
    except UnauthorizedActorError as e:
        return {"error": e.code, "message": e.user_message}
    except StaleStepError as e:
        return {"error": e.code, "message": e.user_message}  # UI refreshes

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ApprovalKernelError (base)
    |
    +-- AuthorizationError
    |   +-- UnauthorizedActorError
    |
    +-- TransitionError
    |   +-- InvalidTransitionError
    |   +-- InvalidDecisionError
    |   +-- StaleStepError
    |       +-- NoCurrentStepError
    |
    +-- NotFoundError
    |   +-- ChainNotFoundError
    |
    +-- DuplicateChainError
    |
    +-- ConfigurationError
    |
    +-- AuditError
    |   +-- AuditAppendError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                    | When Raised
----------------|-------------------------|-------------------------------------
Authorization   | UNAUTHORIZED_ACTOR      | Role not qualified for current step
----------------|-------------------------|-------------------------------------
Transition      | INVALID_TRANSITION      | Status change not in transition table
                | INVALID_DECISION        | Unknown action / missing remarks
                | STALE_STEP              | Step no longer current (race lost)
                | NO_CURRENT_STEP         | Chain already terminal
----------------|-------------------------|-------------------------------------
Lookup          | CHAIN_NOT_FOUND         | Chain id does not exist
                | DUPLICATE_CHAIN         | Entity already has an active chain
----------------|-------------------------|-------------------------------------
Configuration   | CONFIGURATION_ERROR     | Chain definition missing/malformed
----------------|-------------------------|-------------------------------------
Audit           | AUDIT_APPEND_FAILED     | Decision record could not be stored
                | IMMUTABILITY_VIOLATION  | Update/delete of an immutable row

===============================================================================
HANDLING PATTERNS
===============================================================================

* AuthorizationError / TransitionError / NotFoundError -> user-facing,
  never fatal, never retried automatically.
* ConfigurationError -> blocks entity submission; logged for operators.
* AuditError -> the whole operation has been rolled back; the caller may
  retry the call as a unit.
"""


class ApprovalKernelError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "APPROVAL_KERNEL_ERROR"
    user_message: str = "The request could not be processed."


# Authorization


class AuthorizationError(ApprovalKernelError):
    """Base exception for actor qualification errors."""

    code: str = "AUTHORIZATION_ERROR"


class UnauthorizedActorError(AuthorizationError):
    """The actor's role does not qualify for the current step."""

    code: str = "UNAUTHORIZED_ACTOR"

    def __init__(
        self,
        chain_id: str,
        actor_role: str,
        required_role: str,
        awaiting_label: str | None = None,
    ):
        self.chain_id = chain_id
        self.actor_role = actor_role
        self.required_role = required_role
        self.user_message = (
            f"You are not an approver for this step. "
            f"Awaiting approval by {awaiting_label or required_role}."
        )
        super().__init__(
            f"Role '{actor_role}' is not qualified for the current step of "
            f"chain {chain_id} (requires '{required_role}')"
        )


# Transitions


class TransitionError(ApprovalKernelError):
    """Base exception for state machine violations."""

    code: str = "TRANSITION_ERROR"


class InvalidTransitionError(TransitionError):
    """A status change is not permitted by the transition table."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, entity: str, from_status: str, to_status: str, reason: str = ""):
        self.entity = entity
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        self.user_message = "This action is not allowed for the request in its current state."
        detail = f": {reason}" if reason else ""
        super().__init__(
            f"Invalid {entity} transition {from_status} -> {to_status}{detail}"
        )


class InvalidDecisionError(TransitionError):
    """The decision payload itself is unusable (unknown action, missing remarks)."""

    code: str = "INVALID_DECISION"

    def __init__(self, chain_id: str, reason: str):
        self.chain_id = chain_id
        self.reason = reason
        self.user_message = reason
        super().__init__(f"Invalid decision for chain {chain_id}: {reason}")


class StaleStepError(TransitionError):
    """
    A decision targeted a step that is no longer current and pending.

    Raised when a concurrent decision won the race, when a client acted on
    an outdated view of the chain, or when the optimistic version check on
    the chain row fails.
    """

    code: str = "STALE_STEP"

    def __init__(
        self,
        chain_id: str,
        expected_position: int | None = None,
        current_position: int | None = None,
    ):
        self.chain_id = chain_id
        self.expected_position = expected_position
        self.current_position = current_position
        self.user_message = "This request was already decided. Refresh to see its current state."
        super().__init__(
            f"Step {expected_position} of chain {chain_id} is no longer current "
            f"(current step: {current_position})"
        )


class NoCurrentStepError(StaleStepError):
    """The chain has reached a terminal status and accepts no decisions."""

    code: str = "NO_CURRENT_STEP"

    def __init__(self, chain_id: str, status: str):
        self.status = status
        super().__init__(chain_id)
        self.user_message = f"This request is already {status}."
        self.args = (f"Chain {chain_id} has no current step (status: {status})",)


# Lookup


class NotFoundError(ApprovalKernelError):
    """Base exception for missing records."""

    code: str = "NOT_FOUND"


class ChainNotFoundError(NotFoundError):
    """Referenced approval chain does not exist."""

    code: str = "CHAIN_NOT_FOUND"

    def __init__(self, chain_id: str):
        self.chain_id = chain_id
        self.user_message = "Approval request not found."
        super().__init__(f"Approval chain not found: {chain_id}")


class DuplicateChainError(ApprovalKernelError):
    """The approvable entity already has an in-progress chain."""

    code: str = "DUPLICATE_CHAIN"

    def __init__(self, entity_ref: str, existing_chain_id: str | None = None):
        self.entity_ref = entity_ref
        self.existing_chain_id = existing_chain_id
        self.user_message = "This request is already awaiting approval."
        super().__init__(
            f"Entity {entity_ref} already has an in-progress approval chain"
            + (f" ({existing_chain_id})" if existing_chain_id else "")
        )


# Configuration


class ConfigurationError(ApprovalKernelError):
    """
    Approval chain definition is missing or malformed.

    Fatal at ``start()``: entity submission is blocked rather than
    silently defaulting to an unreviewed chain.
    """

    code: str = "CONFIGURATION_ERROR"

    def __init__(
        self,
        workflow_type: str,
        tenant_id: str,
        errors: list[str] | tuple[str, ...],
    ):
        self.workflow_type = workflow_type
        self.tenant_id = tenant_id
        self.errors = tuple(errors)
        super().__init__(
            f"Approval configuration for workflow '{workflow_type}' "
            f"(tenant '{tenant_id}') is invalid: " + "; ".join(self.errors)
        )


# Audit


class AuditError(ApprovalKernelError):
    """Base exception for audit trail errors."""

    code: str = "AUDIT_ERROR"


class AuditAppendError(AuditError):
    """A decision record could not be persisted; the operation is rolled back."""

    code: str = "AUDIT_APPEND_FAILED"

    def __init__(self, chain_id: str, action: str, reason: str):
        self.chain_id = chain_id
        self.action = action
        self.reason = reason
        super().__init__(
            f"Failed to append '{action}' record for chain {chain_id}: {reason}"
        )


class ImmutabilityViolationError(ApprovalKernelError):
    """
    Attempted to modify or delete an immutable record.

    Decision records are immutable from creation; chains and steps are
    immutable once terminal.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
