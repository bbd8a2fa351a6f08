"""
Detached rule execution.

``FlowExecutor.dispatch`` hands an event to a dispatch pool and returns a
Future at once. The dispatch worker re-matches the event (rules may have
changed since the synchronous match) and runs every matched rule's action
chain concurrently on a rule pool, each inside its own app context and
bounded by a wall-clock budget. Nothing raised here ever reaches the caller.
"""
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from flowauto.flows.actions import ActionResult, action_registry
from flowauto.flows.board_state import fetch_board, fetch_card
from flowauto.flows.conditions import check_card_filters, parse_card_filters
from flowauto.flows.context import FlowContext
from flowauto.flows.errors import ActionFailure, ErrorDescriptor, MalformedCondition, Timeout
from flowauto.flows.matcher import load_candidate_rules, match_rules
from flowauto.flows.variables import resolve_config
from flowauto.logging_config import FlowRunContext, get_logger
from flowauto.models import db, generate_uuid
from flowauto.services.run_log_service import RunLogService

logger = get_logger(__name__)


class OutcomeStatus(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ExecutionOutcome:
    rule_id: str
    status: OutcomeStatus
    run_id: str
    rule_name: str = ""
    error: Optional[ErrorDescriptor] = None
    action_results: List[Dict[str, Any]] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def actions_succeeded(self) -> int:
        return sum(1 for r in self.action_results if r.get("success"))

    @property
    def actions_failed(self) -> int:
        return sum(1 for r in self.action_results if not r.get("success"))

    def to_dict(self):
        return {
            'ruleId': self.rule_id,
            'ruleName': self.rule_name,
            'runId': self.run_id,
            'status': self.status.value,
            'error': self.error.to_dict() if self.error else None,
            'actionResults': self.action_results,
            'durationMs': self.duration_ms,
        }


class DispatchTracker:
    """Thread-safe counters for dispatched events."""

    def __init__(self):
        self.stats = {
            "total_dispatched": 0,
            "total_completed": 0,
            "total_failed": 0,
            "total_rejected": 0,
            "total_timed_out": 0,
            "active_count": 0,
            "max_concurrent": 0,
        }
        self.lock = threading.Lock()

    def started(self):
        with self.lock:
            self.stats["total_dispatched"] += 1
            self.stats["active_count"] += 1
            self.stats["max_concurrent"] = max(
                self.stats["max_concurrent"], self.stats["active_count"]
            )

    def completed(self, success=True):
        with self.lock:
            self.stats["active_count"] -= 1
            if success:
                self.stats["total_completed"] += 1
            else:
                self.stats["total_failed"] += 1

    def rejected(self):
        with self.lock:
            self.stats["total_rejected"] += 1

    def timed_out(self):
        with self.lock:
            self.stats["total_timed_out"] += 1

    def snapshot(self):
        with self.lock:
            return dict(self.stats)


class RunGuard:
    """
    Decides who records a rule run when its budget runs out: the worker that
    finished it or the dispatcher that gave up on it. Exactly one side wins.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._finished = False
        self._abandoned = False

    @property
    def abandoned(self):
        return self._abandoned

    def abandon(self) -> bool:
        with self._lock:
            if self._finished:
                return False
            self._abandoned = True
            return True

    def finish(self) -> bool:
        with self._lock:
            if self._abandoned:
                return False
            self._finished = True
            return True


def _log_future(future):
    try:
        future.result()
    except Exception as e:
        logger.error("Flow dispatch task failed", error=str(e), exc_info=True)


class FlowExecutor:
    def __init__(self, app, dispatch_workers=4, rule_workers=8, rule_timeout=30.0,
                 store=None, site_url=""):
        self.app = app
        self.rule_timeout = float(rule_timeout)
        self.store = store
        self.site_url = site_url or ""
        self.tracker = DispatchTracker()
        self._dispatch_pool = ThreadPoolExecutor(max_workers=dispatch_workers, thread_name_prefix="flow-dispatch-")
        self._rule_pool = ThreadPoolExecutor(max_workers=rule_workers, thread_name_prefix="flow-rule-")

    @classmethod
    def from_app(cls, app, store=None):
        config = app.config
        return cls(
            app,
            dispatch_workers=config.get("FLOW_DISPATCH_WORKERS", 4),
            rule_workers=config.get("FLOW_RULE_WORKERS", 8),
            rule_timeout=config.get("FLOW_RULE_TIMEOUT_SECONDS", 30),
            store=store,
            site_url=config.get("SITE_URL", ""),
        )

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def dispatch(self, event, rule_ids=None) -> Future:
        """
        Schedule ``event`` for detached evaluation and return immediately.
        ``rule_ids`` limits execution to those rules (scheduled scans).

        Never raises. If the pool refuses the work (e.g. after shutdown) the
        returned Future is already resolved with an empty outcome list.
        """
        try:
            future = self._dispatch_pool.submit(self._run_event, event, rule_ids)
        except RuntimeError as e:
            self.tracker.rejected()
            logger.error(
                "Flow dispatch rejected",
                board_id=event.board_id,
                card_id=event.card_id,
                event_type=event.type.value,
                error=str(e),
            )
            future = Future()
            future.set_result([])
            return future

        future.add_done_callback(_log_future)
        logger.info(
            "Flow event dispatched",
            board_id=event.board_id,
            card_id=event.card_id,
            event_type=event.type.value,
        )
        return future

    def _run_event(self, event, rule_ids=None):
        self.tracker.started()
        success = False
        try:
            with self.app.app_context():
                outcomes = self.evaluate_rules_for_event(event, rule_ids=rule_ids)
            success = True
            return outcomes
        except Exception as e:
            logger.error(
                "Unexpected error evaluating flow event",
                board_id=event.board_id,
                card_id=event.card_id,
                event_type=event.type.value,
                error=str(e),
                exc_info=True,
            )
            return []
        finally:
            self.tracker.completed(success=success)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate_rules_for_event(self, event, rule_ids=None) -> List[ExecutionOutcome]:
        """
        Re-match ``event`` against the board's current rules and run every
        match concurrently. Blocks until each rule finishes or exhausts its
        budget; a rule over budget is reported as a Timeout failure and its
        worker is left to finish on its own.
        """
        rules = match_rules(event, load_candidate_rules(event.board_id, self.store))
        if rule_ids is not None:
            rules = [rule for rule in rules if rule.id in rule_ids]
        if not rules:
            logger.debug("No rules matched at execution time", board_id=event.board_id,
                         event_type=event.type.value)
            return []

        pending = []
        for rule in rules:
            guard = RunGuard()
            run_id = generate_uuid()
            future = self._rule_pool.submit(self._run_rule_in_context, rule, event, run_id, guard)
            pending.append((rule, run_id, guard, future, time.monotonic() + self.rule_timeout))

        outcomes = []
        for rule, run_id, guard, future, deadline in pending:
            try:
                try:
                    outcome = future.result(timeout=max(0.0, deadline - time.monotonic()))
                except FutureTimeoutError:
                    if guard.abandon():
                        raise
                    # Finished right at the deadline; the worker records it
                    outcome = future.result()
            except FutureTimeoutError:
                self.tracker.timed_out()
                outcome = ExecutionOutcome(
                    rule_id=rule.id,
                    rule_name=rule.name,
                    run_id=run_id,
                    status=OutcomeStatus.FAILED,
                    error=ErrorDescriptor.from_exception(
                        Timeout(f"Rule exceeded {self.rule_timeout:g}s execution budget")
                    ),
                    duration_ms=int(self.rule_timeout * 1000),
                )
                logger.error(
                    "Flow rule timed out",
                    rule_id=rule.id,
                    board_id=event.board_id,
                    card_id=event.card_id,
                    event_type=event.type.value,
                    timeout_seconds=self.rule_timeout,
                )
                RunLogService.record(outcome, event)
            except Exception as e:
                outcome = ExecutionOutcome(
                    rule_id=rule.id,
                    rule_name=rule.name,
                    run_id=run_id,
                    status=OutcomeStatus.FAILED,
                    error=ErrorDescriptor.from_exception(e),
                )
                logger.error(
                    "Flow rule worker crashed",
                    rule_id=rule.id,
                    board_id=event.board_id,
                    card_id=event.card_id,
                    event_type=event.type.value,
                    error=str(e),
                    exc_info=True,
                )
            outcomes.append(outcome)
        return outcomes

    def _run_rule_in_context(self, rule, event, run_id, guard):
        with self.app.app_context():
            return self.run_rule(rule, event, run_id=run_id, guard=guard)

    # ------------------------------------------------------------------
    # Single rule
    # ------------------------------------------------------------------

    def run_rule(self, rule, event, run_id=None, guard=None) -> ExecutionOutcome:
        """
        Execute one rule's action chain against a fresh card snapshot.

        Actions run in order. A failed action stops the chain unless it sets
        ``continue_on_failure``. Earlier actions stay committed. Any exception
        is caught here and becomes the outcome's ErrorDescriptor.
        """
        with FlowRunContext(rule.id, event, run_id=run_id) as run:
            outcome = ExecutionOutcome(rule_id=rule.id, rule_name=rule.name, run_id=run.run_id,
                                       status=OutcomeStatus.SUCCEEDED)
            try:
                self._execute_chain(rule, event, run, outcome, guard)
            except Exception as e:
                db.session.rollback()
                outcome.status = OutcomeStatus.FAILED
                outcome.error = ErrorDescriptor.from_exception(e)
                logger.error(
                    "Flow rule failed",
                    rule_id=rule.id,
                    board_id=event.board_id,
                    card_id=event.card_id,
                    event_type=event.type.value,
                    run_id=run.run_id,
                    error=str(e),
                    exc_info=True,
                )
            outcome.duration_ms = run.elapsed_ms

        if guard is not None and not guard.finish():
            logger.warning("Flow rule finished after its timeout; result discarded",
                           rule_id=rule.id, run_id=outcome.run_id, status=outcome.status.value)
            return outcome

        RunLogService.record(outcome, event)
        return outcome

    def _execute_chain(self, rule, event, run, outcome, guard):
        card = fetch_card(event.card_id, event.board_id)
        board = fetch_board(event.board_id)
        if card is None or board is None:
            outcome.status = OutcomeStatus.SKIPPED
            outcome.error = ErrorDescriptor("CardUnavailable", f"Card {event.card_id} no longer exists")
            logger.info("Skipping rule; card no longer exists", rule_id=rule.id, card_id=event.card_id)
            return

        try:
            filters_pass = check_card_filters(parse_card_filters(rule.conditions), card)
        except MalformedCondition as e:
            e.rule_id = rule.id
            raise
        if not filters_pass:
            outcome.status = OutcomeStatus.SKIPPED
            logger.info("Skipping rule; card filters not met", rule_id=rule.id, card_id=card.id)
            return

        context = FlowContext(rule=rule, card=card, board=board, event=event,
                              run_id=run.run_id, site_url=self.site_url)

        for step_index, action in enumerate(rule.actions):
            if guard is not None and guard.abandoned:
                raise Timeout("Rule execution abandoned after timeout")

            result, error = self._run_action(action, context)
            entry = {'actionId': action.id, 'type': action.kind, **result.to_dict()}
            outcome.action_results.append(entry)

            if result.success:
                db.session.commit()
                context.record_output(step_index, result.output)
                continue

            db.session.rollback()
            if outcome.error is None:
                outcome.error = error or ErrorDescriptor(
                    ActionFailure.__name__, result.error or "Action failed"
                )
            outcome.status = OutcomeStatus.FAILED
            logger.warning(
                "Flow action failed",
                rule_id=rule.id,
                run_id=run.run_id,
                step=step_index,
                action_type=action.kind,
                error=result.error,
                continue_on_failure=action.continue_on_failure,
            )
            if not action.continue_on_failure:
                break

    def _run_action(self, action, context):
        """Run one action; returns (ActionResult, ErrorDescriptor or None)."""
        handler = action_registry.get(action.kind)
        if handler is None:
            result = ActionResult.failed(f"Unknown action type: {action.kind}")
            return result, ErrorDescriptor(ActionFailure.__name__, result.error)

        try:
            config = resolve_config(action.config, context)
            return handler.run(config, context), None
        except ActionFailure as e:
            return ActionResult.failed(str(e)), ErrorDescriptor.from_exception(e)
        except Exception as e:
            logger.error("Flow action raised", action_type=action.kind, rule_id=context.rule.id,
                         error=str(e), exc_info=True)
            return (
                ActionResult.failed(str(e) or type(e).__name__),
                ErrorDescriptor(ActionFailure.__name__, str(e) or type(e).__name__),
            )

    def stats(self):
        return self.tracker.snapshot()

    def shutdown(self, wait=True):
        self._dispatch_pool.shutdown(wait=wait)
        self._rule_pool.shutdown(wait=wait)
