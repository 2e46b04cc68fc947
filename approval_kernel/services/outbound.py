"""
ApprovalEventPublisher -- post-commit status events and actor notifications.

Responsibility:
    After a chain operation commits, tell the entity owner about terminal
    statuses (``StatusChangeListener``) and tell role holders about approval
    progress (``ActorNotifier``) according to the chain's notification
    policy snapshot.

Architecture position:
    Kernel > Services.  Called by the orchestrator and the escalation timer
    strictly AFTER commit, never inside a unit of work.

Invariants enforced:
    - Exactly one ChainStatusChanged per chain, emitted when the chain
      reaches a terminal status.
    - Listener and notifier failures are logged and do not undo the
      committed decision.  Listeners must be idempotent; delivery is
      at-least-once from the caller's point of view.
"""

from collections.abc import Iterable, Sequence

from approval_kernel.domain.approval import (
    ActorNotifier,
    ApprovalChainInstance,
    ApprovalNotice,
    ChainStatus,
    ChainStatusChanged,
    NotificationEvent,
    NotificationPolicy,
    StatusChangeListener,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.roles import Role
from approval_kernel.logging_config import get_logger
from approval_kernel.services.decision_applier import DecisionOutcome

logger = get_logger("services.outbound")

_TERMINAL_NOTICE: dict[ChainStatus, NotificationEvent] = {
    ChainStatus.APPROVED: NotificationEvent.CHAIN_APPROVED,
    ChainStatus.REJECTED: NotificationEvent.CHAIN_REJECTED,
    ChainStatus.CANCELLED: NotificationEvent.CHAIN_CANCELLED,
}


def _decision_audience(policy: NotificationPolicy) -> list[Role]:
    """Roles told about every decision: cc roles, then requester and HR when enabled."""
    roles = list(policy.cc_roles)
    if policy.notify_requester_on_decision:
        roles.append(Role.EMPLOYEE)
    if policy.notify_hr:
        roles.append(Role.HR_MANAGER)
    return roles


class ApprovalEventPublisher:
    """Fans approval outcomes out to listeners and notifiers."""

    def __init__(
        self,
        listeners: Sequence[StatusChangeListener] = (),
        notifiers: Sequence[ActorNotifier] = (),
        clock: Clock | None = None,
    ):
        self._listeners = list(listeners)
        self._notifiers = list(notifiers)
        self._clock = clock or SystemClock()

    def add_listener(self, listener: StatusChangeListener) -> None:
        self._listeners.append(listener)

    def add_notifier(self, notifier: ActorNotifier) -> None:
        self._notifiers.append(notifier)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def chain_started(self, chain: ApprovalChainInstance) -> None:
        """Tell the first approver a request is waiting."""
        if chain.notifications.notify_approver and chain.current_position is not None:
            step = chain.step_at(chain.current_position)
            self._notify(
                [step.required_role], chain,
                NotificationEvent.STEP_ACTIVATED, step.position,
            )

    def decision_applied(self, outcome: DecisionOutcome) -> None:
        """Publish the effects of one committed decision or cancellation."""
        chain = outcome.chain
        policy = chain.notifications

        if outcome.is_terminal:
            self._emit_status_changed(chain)
            kind = _TERMINAL_NOTICE[chain.status]
            roles = _decision_audience(policy)
            if kind == NotificationEvent.CHAIN_CANCELLED and policy.notify_approver:
                roles.append(chain.step_at(outcome.plan.step_position).required_role)
            self._notify(roles, chain, kind, outcome.plan.step_position)
            return

        self._notify(
            _decision_audience(policy), chain,
            NotificationEvent.STEP_DECIDED, outcome.plan.step_position,
        )
        if policy.notify_approver and outcome.plan.next_position is not None:
            next_step = chain.step_at(outcome.plan.next_position)
            self._notify(
                [next_step.required_role], chain,
                NotificationEvent.STEP_ACTIVATED, next_step.position,
            )

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _emit_status_changed(self, chain: ApprovalChainInstance) -> None:
        event = ChainStatusChanged(
            chain_id=chain.chain_id,
            entity_ref=chain.entity_ref,
            final_status=chain.status,
            tenant_id=chain.tenant_id,
            workflow_type=chain.workflow_type,
            occurred_at=chain.resolved_at or self._clock.now(),
        )
        logger.info(
            "chain_status_changed",
            extra={
                "chain_id": str(chain.chain_id),
                "entity_ref": str(chain.entity_ref),
                "final_status": chain.status.value,
            },
        )
        for listener in self._listeners:
            try:
                listener.on_status_changed(event)
            except Exception:
                logger.exception(
                    "status_listener_failed",
                    extra={
                        "chain_id": str(chain.chain_id),
                        "listener": type(listener).__name__,
                    },
                )

    def _notify(
        self,
        roles: Iterable[Role],
        chain: ApprovalChainInstance,
        kind: NotificationEvent,
        step_position: int | None,
    ) -> None:
        unique_roles = list(dict.fromkeys(roles))
        if not unique_roles or not self._notifiers:
            return
        notice = ApprovalNotice(
            kind=kind,
            chain_id=chain.chain_id,
            tenant_id=chain.tenant_id,
            workflow_type=chain.workflow_type,
            step_position=step_position,
            occurred_at=self._clock.now(),
        )
        for role in unique_roles:
            for notifier in self._notifiers:
                try:
                    notifier.notify_actor(role, chain.entity_ref, notice)
                except Exception:
                    logger.exception(
                        "actor_notification_failed",
                        extra={
                            "chain_id": str(chain.chain_id),
                            "role": role.value,
                            "event": kind.value,
                        },
                    )
