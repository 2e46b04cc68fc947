"""
DecisionApplier -- atomically apply one decision to a chain's current step.

Responsibility:
    Validates that a decision targets the chain's current pending step and
    that the actor qualifies, then updates the step, advances or finishes
    the chain, and appends the decision record -- all in the caller's unit
    of work.

Architecture position:
    Kernel > Services -- imperative shell around the pure state machine in
    ``approval_engines.approval``.  Flushes but never commits; the
    orchestrator and escalation timer own the transaction.

Invariants enforced:
    - Only the current pending step can be decided; a decision pinned to
      another position, or arriving after the chain finished, raises
      StaleStepError (NoCurrentStepError when the chain is terminal).
    - The step status change, the chain status/position change and the
      decision record land in one transaction or not at all.
    - The chain row is loaded FOR UPDATE and its ``version`` column is
      checked on UPDATE; a concurrent writer surfaces as StaleStepError.
    - Remarks are stripped; blank remarks are stored as NULL.

Failure modes:
    - ChainNotFoundError, UnauthorizedActorError, InvalidDecisionError,
      StaleStepError / NoCurrentStepError, InvalidTransitionError,
      AuditAppendError.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from approval_engines.approval import (
    awaiting_label,
    current_step,
    is_qualified,
    plan_cancellation,
    plan_decision,
)
from approval_engines.escalation import compute_deadline, is_due
from approval_kernel.domain.approval import (
    ApprovalChainInstance,
    ChainStatus,
    DecisionAction,
    DecisionPlan,
    DecisionRecord,
    StepStatus,
)
from approval_kernel.domain.calendar import WorkCalendar
from approval_kernel.domain.clock import Clock, SystemClock, as_utc
from approval_kernel.domain.roles import SYSTEM_ACTOR_ID, SYSTEM_ACTOR_ROLE, Role
from approval_kernel.exceptions import (
    ChainNotFoundError,
    InvalidDecisionError,
    InvalidTransitionError,
    NoCurrentStepError,
    StaleStepError,
    UnauthorizedActorError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.approval import ApprovalChainModel
from approval_kernel.services.audit_trail import AuditTrail

logger = get_logger("services.decision_applier")


@dataclass(frozen=True)
class DecisionOutcome:
    """Result of one applied decision (chain snapshot taken after flush)."""

    chain: ApprovalChainInstance
    record: DecisionRecord
    plan: DecisionPlan

    @property
    def is_terminal(self) -> bool:
        return self.plan.is_terminal


def normalize_remarks(remarks: str | None) -> str | None:
    if remarks is None:
        return None
    stripped = remarks.strip()
    return stripped or None


class DecisionApplier:
    """Applies human decisions, auto-approvals and cancellations."""

    def __init__(
        self,
        session: Session,
        audit_trail: AuditTrail | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._audit = audit_trail or AuditTrail(session, self._clock)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def decide(
        self,
        chain_id: UUID,
        actor_id: UUID,
        actor_role: Role | str,
        action: DecisionAction | str,
        remarks: str | None = None,
        expected_position: int | None = None,
    ) -> DecisionOutcome:
        """Apply an approve/reject decision by a human actor."""
        action = self._parse_action(chain_id, action)
        model = self._load_chain(chain_id)
        chain = model.to_dto()
        step = self._current_step(chain, expected_position)

        if not is_qualified(actor_role, step):
            logger.warning(
                "decision_unauthorized",
                extra={
                    "chain_id": str(chain_id),
                    "actor_role": str(getattr(actor_role, "value", actor_role)),
                    "required_role": step.required_role.value,
                    "step_position": step.position,
                },
            )
            raise UnauthorizedActorError(
                str(chain_id),
                str(getattr(actor_role, "value", actor_role)),
                step.required_role.value,
                awaiting_label(step),
            )

        remarks = normalize_remarks(remarks)
        if (
            action == DecisionAction.REJECT
            and chain.require_remarks_on_reject
            and remarks is None
        ):
            raise InvalidDecisionError(str(chain_id), "Remarks are required to reject.")

        role = Role.parse(actor_role)
        plan = plan_decision(chain, action, role)
        now = self._clock.now()
        return self._apply(
            model, plan, actor_id, role.value, remarks, now, auto=False,
        )

    def auto_approve(
        self,
        chain_id: UUID,
        expected_position: int,
        now: datetime | None = None,
    ) -> DecisionOutcome:
        """Auto-approve the current step as the system actor once it is due."""
        now = as_utc(now or self._clock.now())
        model = self._load_chain(chain_id)
        chain = model.to_dto()
        step = self._current_step(chain, expected_position)

        if chain.auto_approve_after_days == 0:
            raise InvalidTransitionError(
                "step", step.status.value, StepStatus.APPROVED.value,
                "auto-approval is disabled for this chain",
            )
        if not is_due(chain.current_step_due_at, now):
            raise InvalidTransitionError(
                "step", step.status.value, StepStatus.APPROVED.value,
                f"step {step.position} is not due until {chain.current_step_due_at}",
            )

        plan = plan_decision(chain, DecisionAction.AUTO_APPROVE)
        return self._apply(
            model, plan, SYSTEM_ACTOR_ID, SYSTEM_ACTOR_ROLE, None, now, auto=True,
        )

    def cancel(
        self,
        chain_id: UUID,
        actor_id: UUID | None = None,
        actor_role: Role | str | None = None,
    ) -> DecisionOutcome:
        """Cancel an in-progress chain, skipping every pending step.

        Without an actor the cancellation is recorded against the system actor.
        """
        model = self._load_chain(chain_id)
        chain = model.to_dto()
        if chain.status != ChainStatus.IN_PROGRESS:
            raise InvalidTransitionError(
                "chain", chain.status.value, ChainStatus.CANCELLED.value,
                "only in-progress chains can be cancelled",
            )
        self._current_step(chain, None)

        plan = plan_cancellation(chain)
        now = self._clock.now()
        return self._apply(
            model, plan,
            actor_id or SYSTEM_ACTOR_ID,
            str(getattr(actor_role, "value", actor_role) or SYSTEM_ACTOR_ROLE),
            None, now, auto=False,
        )

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _parse_action(self, chain_id: UUID, action: DecisionAction | str) -> DecisionAction:
        try:
            parsed = DecisionAction(action)
        except ValueError:
            raise InvalidDecisionError(str(chain_id), f"Unknown action '{action}'.") from None
        if parsed == DecisionAction.AUTO_APPROVE:
            raise InvalidDecisionError(
                str(chain_id), "Auto-approval can only be applied by the system.",
            )
        return parsed

    def _load_chain(self, chain_id: UUID) -> ApprovalChainModel:
        model = self._session.execute(
            select(ApprovalChainModel)
            .where(ApprovalChainModel.chain_id == chain_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise ChainNotFoundError(str(chain_id))
        return model

    def _current_step(self, chain: ApprovalChainInstance, expected_position: int | None):
        if chain.status != ChainStatus.IN_PROGRESS:
            raise NoCurrentStepError(str(chain.chain_id), chain.status.value)
        step = current_step(chain)
        if step is None:
            raise NoCurrentStepError(str(chain.chain_id), chain.status.value)
        if expected_position is not None and expected_position != step.position:
            raise StaleStepError(str(chain.chain_id), expected_position, step.position)
        return step

    def _apply(
        self,
        model: ApprovalChainModel,
        plan: DecisionPlan,
        actor_id: UUID,
        actor_role: str,
        remarks: str | None,
        now: datetime,
        auto: bool,
    ) -> DecisionOutcome:
        step_model = model.step_at(plan.step_position)
        step_model.status = plan.step_status.value
        if plan.step_status != StepStatus.SKIPPED:
            step_model.decided_by = actor_id
            step_model.decided_as_fallback = plan.as_fallback
            step_model.remarks = remarks
            if auto:
                step_model.auto_resolved_at = now
            else:
                step_model.decided_at = now

        for position in plan.skipped_positions:
            model.step_at(position).status = StepStatus.SKIPPED.value

        model.status = plan.chain_status.value
        if plan.next_position is not None:
            model.current_position = plan.next_position
            model.step_at(plan.next_position).activated_at = now
            model.current_step_due_at = compute_deadline(
                now,
                model.auto_approve_after_days,
                WorkCalendar.from_dict((model.policy_snapshot or {}).get("calendar")),
            )
        else:
            model.current_position = None
            model.current_step_due_at = None
            model.resolved_at = now

        self._flush(model)

        record = self._audit.append(
            chain_id=model.chain_id,
            step_position=plan.step_position,
            actor_id=actor_id,
            actor_role=actor_role,
            action=plan.audit_action,
            remarks=remarks,
            as_fallback=plan.as_fallback,
            timestamp=now,
        )

        chain = model.to_dto()
        logger.info(
            "decision_applied",
            extra={
                "chain_id": str(model.chain_id),
                "step_position": plan.step_position,
                "action": plan.audit_action.value,
                "actor_role": actor_role,
                "as_fallback": plan.as_fallback,
                "chain_status": chain.status.value,
                "next_position": plan.next_position,
                "skipped_positions": list(plan.skipped_positions),
            },
        )
        return DecisionOutcome(chain=chain, record=record, plan=plan)

    def _flush(self, model: ApprovalChainModel) -> None:
        try:
            self._session.flush()
        except StaleDataError as exc:
            logger.warning(
                "decision_version_conflict",
                extra={"chain_id": str(model.chain_id)},
            )
            raise StaleStepError(str(model.chain_id)) from exc
