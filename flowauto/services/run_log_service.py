from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from flowauto.logging_config import get_logger

logger = get_logger(__name__)


class RunLogService:
    """Persists rule run history and keeps each rule's run counters current."""

    @staticmethod
    def run_status_for(outcome):
        """
        Map an execution outcome onto the persisted run status.

        A failed run where at least one action succeeded is 'partial'.
        """
        from flowauto.models import RunStatus

        if outcome.status.value == "skipped":
            return RunStatus.SKIPPED
        if outcome.status.value == "succeeded":
            return RunStatus.SUCCESS
        if outcome.actions_succeeded > 0:
            return RunStatus.PARTIAL
        return RunStatus.FAILED

    @staticmethod
    def record(outcome, event):
        """
        Insert a FlowRunLog row for ``outcome`` and bump the rule's run_count,
        last_run_at and last_run_status in the same transaction.

        Write failures are logged, never raised.

        Returns:
            FlowRunLog or None if the write failed
        """
        from flowauto.models import FlowRule, FlowRunLog, db

        status = RunLogService.run_status_for(outcome)
        now = datetime.utcnow()
        try:
            entry = FlowRunLog(
                id=outcome.run_id,
                rule_id=outcome.rule_id,
                board_id=event.board_id,
                card_id=event.card_id,
                event_type=event.type.value,
                triggered_by=event.triggered_by,
                triggered_at=now,
                status=status,
                actions_total=len(outcome.action_results),
                actions_succeeded=outcome.actions_succeeded,
                actions_failed=outcome.actions_failed,
                action_results=outcome.action_results,
                error_type=outcome.error.kind if outcome.error else None,
                error_message=outcome.error.message if outcome.error else None,
                duration_ms=outcome.duration_ms,
            )
            db.session.add(entry)

            # Single UPDATE so concurrent runs of one rule never lose a count
            FlowRule.query.filter(FlowRule.id == outcome.rule_id).update(
                {
                    FlowRule.run_count: FlowRule.run_count + 1,
                    FlowRule.last_run_at: now,
                    FlowRule.last_run_status: status.value,
                },
                synchronize_session=False,
            )
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(
                "Failed to record flow run",
                rule_id=outcome.rule_id,
                run_id=outcome.run_id,
                error=str(e),
                exc_info=True,
            )
            return None

        logger.info(
            "Flow run recorded",
            rule_id=outcome.rule_id,
            run_id=outcome.run_id,
            status=status.value,
            duration_ms=outcome.duration_ms,
        )
        return entry

    @staticmethod
    def list_runs(rule_id, limit=50):
        from flowauto.models import FlowRunLog

        return (
            FlowRunLog.query.filter(FlowRunLog.rule_id == rule_id)
            .order_by(FlowRunLog.triggered_at.desc())
            .limit(limit)
            .all()
        )
