"""
epp_kernel.services.approval_service -- Sequential order approval chains.

Responsibility:
    Materializes an order's approval chain from a workflow template,
    resolves levels on behalf of human approvers, runs the timeout sweep,
    and keeps the order-aggregate status in step with the chain.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/ and
    OrderService (for the per-order exclusive section and transitions).

Invariants enforced:
    - One row per template level, created PENDING.  Levels whose
      auto_approve_under covers the order total resolve APPROVED at creation
      with the system actor.  Auto-approval never exempts lower levels.
    - Strict ordering: a level resolves only when every lower level is
      APPROVED.
    - Resolved levels are immutable (service check + ORM listener).
    - Aggregate status is always re-derived from the levels; a REJECTED
      level cancels the order and leaves later levels PENDING.
    - All chain mutations run inside the order lock and bump the order
      version, so a sweep and a manual resolution cannot both win.
    - The timeout sweep only escalates the *active* level of an order and
      is idempotent.

Failure modes:
    - ApprovalNotFoundError, ApprovalAlreadyResolvedError,
      ApprovalChainExistsError, OutOfOrderError, AuthorizationError.
    - InvalidOrderStateError if the order left PENDING_APPROVAL.
    - OptimisticLockError on a concurrent modification of the order.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from epp_kernel.domain.approval import (
    REASON_AUTO_APPROVED,
    REASON_MANUAL,
    REASON_TIMEOUT_AUTO_APPROVED,
    SYSTEM_ACTOR_ID,
    ActorDirectory,
    ApprovalDecision,
    ApprovalLevelStatus,
    ApprovalOutcome,
    ApprovalWorkflow,
    EscalationPolicy,
    OrderApproval,
    TimeoutAction,
    TimeoutOutcome,
    derive_order_approval_status,
    first_blocking_level,
    is_timed_out,
)
from epp_kernel.domain.clock import Clock, SystemClock, ensure_utc
from epp_kernel.domain.order import OrderStatus
from epp_kernel.exceptions import (
    ApprovalAlreadyResolvedError,
    ApprovalChainExistsError,
    ApprovalNotFoundError,
    ApprovalTimeoutError,
    AuthorizationError,
    InvalidOrderStateError,
    OutOfOrderError,
)
from epp_kernel.logging_config import get_logger
from epp_kernel.models.approval import OrderApprovalModel
from epp_kernel.models.order import OrderModel
from epp_kernel.services.order_service import OrderService

logger = get_logger("services.approval")


class ApprovalService:
    """Drives orders through their approval chains."""

    def __init__(
        self,
        session: Session,
        orders: OrderService,
        actor_directory: ActorDirectory,
        clock: Clock | None = None,
        escalation_policy: EscalationPolicy = EscalationPolicy.AUTO_REJECT,
    ) -> None:
        self._session = session
        self._orders = orders
        self._actors = actor_directory
        self._clock = clock or SystemClock()
        self._escalation_policy = escalation_policy

    # ------------------------------------------------------------------
    # Chain creation
    # ------------------------------------------------------------------

    def create_approval_chain(
        self, order_id: UUID, workflow: ApprovalWorkflow,
    ) -> tuple[OrderApproval, ...]:
        """Materialize one level per template level for the order."""
        order = self._orders.lock(order_id)
        if order.status != OrderStatus.PENDING_APPROVAL.value:
            raise InvalidOrderStateError(
                str(order_id), order.status, OrderStatus.PENDING_APPROVAL.value,
            )
        if self._load_levels(order_id):
            raise ApprovalChainExistsError(str(order_id))

        now = self._clock.now_utc()
        levels: list[OrderApprovalModel] = []
        for number, template in enumerate(workflow.levels, start=1):
            auto = (
                template.auto_approve_under is not None
                and template.auto_approve_under >= order.principal
            )
            model = OrderApprovalModel(
                order_id=order_id,
                approval_level=number,
                approver_role=template.approver_role,
                is_required=template.is_required,
                auto_approve_under=template.auto_approve_under,
                timeout_days=template.timeout_days,
                status=(
                    ApprovalLevelStatus.APPROVED.value if auto
                    else ApprovalLevelStatus.PENDING.value
                ),
                approver_id=SYSTEM_ACTOR_ID if auto else None,
                resolution_reason=REASON_AUTO_APPROVED if auto else None,
                comment="",
                created_at=now,
                resolved_at=now if auto else None,
            )
            self._session.add(model)
            levels.append(model)
            if auto:
                logger.info(
                    "approval_level_auto_approved",
                    extra={
                        "order_id": str(order_id),
                        "approval_level": number,
                        "threshold": template.auto_approve_under,
                        "order_total": order.principal,
                    },
                )

        order.workflow_name = workflow.name
        self._session.flush()
        status = self._apply_aggregate(order, levels)

        logger.info(
            "approval_chain_created",
            extra={
                "order_id": str(order_id),
                "workflow_name": workflow.name,
                "level_count": len(levels),
                "order_status": status.value,
            },
        )
        return tuple(m.to_dto() for m in levels)

    # ------------------------------------------------------------------
    # Manual resolution
    # ------------------------------------------------------------------

    def resolve_level(
        self,
        order_approval_id: UUID,
        decision: ApprovalDecision,
        actor_id: UUID,
        comment: str = "",
    ) -> ApprovalOutcome:
        """Approve or reject the active level of an order's chain."""
        target = self._session.get(OrderApprovalModel, order_approval_id)
        if target is None:
            raise ApprovalNotFoundError(str(order_approval_id))

        order = self._orders.lock(target.order_id)
        levels = self._load_levels(order.id)
        level = next(lv for lv in levels if lv.id == order_approval_id)

        if level.status != ApprovalLevelStatus.PENDING.value:
            raise ApprovalAlreadyResolvedError(str(order_approval_id), level.status)
        if order.status != OrderStatus.PENDING_APPROVAL.value:
            raise InvalidOrderStateError(
                str(order.id), order.status, OrderStatus.PENDING_APPROVAL.value,
            )
        blocking = first_blocking_level(
            [lv.to_dto() for lv in levels], level.approval_level,
        )
        if blocking is not None:
            raise OutOfOrderError(str(order_approval_id), level.approval_level, blocking)
        if not self._actors.has_role(actor_id, level.approver_role):
            raise AuthorizationError(
                str(actor_id), level.approver_role, str(order_approval_id),
            )

        self._resolve(level, decision.resulting_status, actor_id, REASON_MANUAL, comment)
        status = self._apply_aggregate(
            order,
            levels,
            reason=(
                f"Rejected at approval level {level.approval_level}"
                if decision == ApprovalDecision.REJECT else None
            ),
        )

        logger.info(
            "approval_level_resolved",
            extra={
                "order_id": str(order.id),
                "approval_level": level.approval_level,
                "decision": decision.value,
                "actor_id": str(actor_id),
                "order_status": status.value,
            },
        )
        return ApprovalOutcome(
            order_id=order.id,
            order_status=status,
            levels=tuple(lv.to_dto() for lv in levels),
        )

    # ------------------------------------------------------------------
    # Timeout sweep
    # ------------------------------------------------------------------

    def sweep_timeouts(self, as_of: datetime | None = None) -> tuple[TimeoutOutcome, ...]:
        """
        Escalate overdue active levels according to the escalation policy.

        Re-running the sweep after an escalation was applied is a no-op:
        rejected orders are no longer PENDING_APPROVAL, approved levels are
        no longer PENDING, flagged levels carry escalated_at.
        """
        now = ensure_utc(as_of) if as_of is not None else self._clock.now_utc()
        order_ids = self.timeout_candidates(now)

        outcomes: list[TimeoutOutcome] = []
        for order_id in order_ids:
            outcomes.extend(self.sweep_order(order_id, now))

        counts: dict[str, int] = defaultdict(int)
        for outcome in outcomes:
            counts[outcome.action.value] += 1
        logger.info(
            "approval_timeout_sweep_completed",
            extra={
                "as_of": now,
                "escalation_policy": self._escalation_policy.value,
                "orders_examined": len(order_ids),
                "escalations": dict(counts),
            },
        )
        return tuple(outcomes)

    def timeout_candidates(self, as_of: datetime | None = None) -> list[UUID]:
        """Orders whose active level is past its timeout at ``as_of``, sorted by id."""
        now = ensure_utc(as_of) if as_of is not None else self._clock.now_utc()
        pending = self._session.execute(
            select(OrderApprovalModel)
            .join(OrderModel, OrderModel.id == OrderApprovalModel.order_id)
            .where(
                OrderApprovalModel.status == ApprovalLevelStatus.PENDING.value,
                OrderModel.status == OrderStatus.PENDING_APPROVAL.value,
            )
            .order_by(OrderApprovalModel.order_id, OrderApprovalModel.approval_level)
        ).scalars().all()

        # Lowest PENDING level per order is the active one.
        active: dict[UUID, OrderApprovalModel] = {}
        for level in pending:
            active.setdefault(level.order_id, level)

        candidates = [
            order_id
            for order_id, level in active.items()
            if is_timed_out(level.to_dto(), now)
            and not (
                self._escalation_policy == EscalationPolicy.FLAG_ONLY
                and level.escalated_at is not None
            )
        ]
        return sorted(candidates, key=str)

    def sweep_order(self, order_id: UUID, as_of: datetime) -> list[TimeoutOutcome]:
        """Escalate the overdue active level(s) of one order."""
        now = ensure_utc(as_of)
        order = self._orders.lock(order_id)
        if order.status != OrderStatus.PENDING_APPROVAL.value:
            return []
        levels = self._load_levels(order_id)

        applied: list[tuple[OrderApprovalModel, TimeoutAction]] = []
        for level in levels:
            if level.status == ApprovalLevelStatus.APPROVED.value:
                continue
            # First non-approved level is the active one.
            dto = level.to_dto()
            if not is_timed_out(dto, now):
                break
            if self._escalation_policy == EscalationPolicy.AUTO_REJECT:
                timeout = ApprovalTimeoutError(str(level.id), level.timeout_days)
                self._resolve(
                    level, ApprovalLevelStatus.REJECTED, SYSTEM_ACTOR_ID,
                    timeout.code, str(timeout),
                )
                applied.append((level, TimeoutAction.REJECTED))
                break
            if self._escalation_policy == EscalationPolicy.AUTO_APPROVE:
                self._resolve(
                    level, ApprovalLevelStatus.APPROVED, SYSTEM_ACTOR_ID,
                    REASON_TIMEOUT_AUTO_APPROVED, "",
                )
                applied.append((level, TimeoutAction.APPROVED))
                continue
            if level.escalated_at is None:
                level.escalated_at = now
                self._session.flush()
                applied.append((level, TimeoutAction.FLAGGED))
            break

        if not applied:
            return []

        status = self._apply_aggregate(
            order,
            levels,
            reason=f"Approval timed out at level {applied[-1][0].approval_level}",
        )
        outcomes = []
        for level, action in applied:
            logger.warning(
                "approval_level_timed_out",
                extra={
                    "order_id": str(order_id),
                    "approval_level": level.approval_level,
                    "timeout_days": level.timeout_days,
                    "action": action.value,
                },
            )
            outcomes.append(
                TimeoutOutcome(
                    order_id=order_id,
                    approval_id=level.id,
                    approval_level=level.approval_level,
                    action=action,
                    order_status=status,
                )
            )
        return outcomes

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_chain(self, order_id: UUID) -> tuple[OrderApproval, ...]:
        return tuple(m.to_dto() for m in self._load_levels(order_id))

    def get_outcome(self, order_id: UUID) -> ApprovalOutcome:
        order = self._orders.load(order_id)
        return ApprovalOutcome(
            order_id=order_id,
            order_status=OrderStatus(order.status),
            levels=self.get_chain(order_id),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve(
        self,
        level: OrderApprovalModel,
        status: ApprovalLevelStatus,
        actor_id: UUID,
        reason: str,
        comment: str,
    ) -> None:
        level.status = status.value
        level.approver_id = actor_id
        level.resolution_reason = reason
        level.comment = comment
        level.resolved_at = self._clock.now_utc()
        self._session.flush()

    def _apply_aggregate(
        self,
        order: OrderModel,
        levels: list[OrderApprovalModel],
        reason: str | None = None,
    ) -> OrderStatus:
        derived = derive_order_approval_status(lv.to_dto() for lv in levels)
        self._orders.transition(
            order, derived, reason=reason if derived == OrderStatus.CANCELLED else None,
        )
        return derived

    def _load_levels(self, order_id: UUID) -> list[OrderApprovalModel]:
        return list(
            self._session.execute(
                select(OrderApprovalModel)
                .where(OrderApprovalModel.order_id == order_id)
                .order_by(OrderApprovalModel.approval_level)
                .execution_options(populate_existing=True)
            ).scalars()
        )
