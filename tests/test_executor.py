"""
Tests for detached rule execution: ordering, fail-fast, isolation,
concurrency, timeouts and run history.
"""
import threading
from concurrent.futures import TimeoutError as FutureTimeoutError
from unittest.mock import patch

import pytest

from flowauto.flows.actions import ActionHandler, ActionResult, action_registry
from flowauto.flows.events import Event, EventKind
from flowauto.flows.executor import ExecutionOutcome, OutcomeStatus, RunGuard
from flowauto.flows.store import RuleStore
from flowauto.models import Card, CardComment, FlowRule, FlowRunLog, Notification, RunStatus, db
from flowauto.services.notification_service import NotificationService
from flowauto.services.run_log_service import RunLogService


def tag(name, **extra):
    return dict({'type': 'add_tag', 'config': {'tag': name}}, **extra)


def refresh():
    db.session.expire_all()


@pytest.fixture
def register_handler(monkeypatch):
    """Temporarily register an extra action handler instance."""
    def _register(handler):
        monkeypatch.setitem(action_registry._handlers, handler.kind, handler)
        return handler
    return _register


class BarrierAction(ActionHandler):
    """Succeeds only if ``parties`` runs reach the barrier at the same time."""
    kind = "test_barrier"

    def __init__(self, parties):
        self.barrier = threading.Barrier(parties, timeout=3)

    def execute(self, config, context):
        self.barrier.wait()
        return ActionResult.ok()


class BlockingAction(ActionHandler):
    kind = "test_block"

    def __init__(self):
        self.release = threading.Event()

    def execute(self, config, context):
        self.release.wait(5)
        return ActionResult.ok()


class ExplodingAction(ActionHandler):
    kind = "test_explode"

    def execute(self, config, context):
        raise RuntimeError("kaboom")


# ==============================================================================
# Single rule chains
# ==============================================================================

class TestActionChain:
    def test_actions_run_in_declared_order(self, executor, make_rule, card, moved_to_done):
        make_rule(actions=[
            {'type': 'set_due_date', 'config': {'mode': 'absolute', 'date': '2026-04-01'}},
            {'type': 'add_automated_comment', 'config': {'text': 'Due {{step.0.output.dueDate}}'}},
        ])

        [outcome] = executor.evaluate_rules_for_event(moved_to_done)

        assert outcome.status is OutcomeStatus.SUCCEEDED
        comment = CardComment.query.one()
        assert comment.content.endswith("Due 2026-04-01")

    def test_failing_action_stops_the_rest_of_the_chain(self, executor, make_rule, card, moved_to_done):
        make_rule(actions=[
            tag('first'),
            tag('second'),
            {'type': 'set_priority', 'config': {'priority': 'whenever'}},
            tag('fourth'),
            tag('fifth'),
        ])

        [outcome] = executor.evaluate_rules_for_event(moved_to_done)
        refresh()

        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.error.kind == "ActionFailure"
        assert len(outcome.action_results) == 3
        assert Card.query.get("C1").tags == ['residential', 'first', 'second']

    def test_continue_on_failure_lets_the_chain_proceed(self, executor, make_rule, card, moved_to_done):
        make_rule(actions=[
            tag('first'),
            {'type': 'set_priority', 'config': {}, 'continueOnFailure': True},
            tag('third'),
        ])

        [outcome] = executor.evaluate_rules_for_event(moved_to_done)
        refresh()

        assert outcome.status is OutcomeStatus.FAILED
        assert [r['success'] for r in outcome.action_results] == [True, False, True]
        assert Card.query.get("C1").tags == ['residential', 'first', 'third']

    def test_unknown_action_type_fails_the_rule(self, executor, make_rule, card, moved_to_done):
        make_rule(actions=[{'type': 'launch_rocket', 'config': {}}, tag('never')])

        [outcome] = executor.evaluate_rules_for_event(moved_to_done)
        refresh()

        assert outcome.action_results[0]['error'] == "Unknown action type: launch_rocket"
        assert Card.query.get("C1").tags == ['residential']

    def test_exception_in_action_is_caught(self, executor, make_rule, card, moved_to_done, register_handler):
        register_handler(ExplodingAction())
        make_rule(actions=[{'type': 'test_explode'}])

        [outcome] = executor.evaluate_rules_for_event(moved_to_done)

        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.action_results[0]['error'] == "kaboom"

    def test_card_filters_that_fail_skip_the_rule(self, executor, make_rule, card, moved_to_done):
        make_rule(
            conditions=[{'field': 'priority', 'operator': 'equals', 'value': 'urgent'}],
            actions=[tag('never')],
        )

        [outcome] = executor.evaluate_rules_for_event(moved_to_done)
        refresh()

        assert outcome.status is OutcomeStatus.SKIPPED
        assert outcome.action_results == []
        assert Card.query.get("C1").tags == ['residential']

    def test_deleted_card_skips_the_rule(self, executor, make_rule, board, moved_to_done):
        make_rule(actions=[tag('never')])

        [outcome] = executor.evaluate_rules_for_event(moved_to_done)

        assert outcome.status is OutcomeStatus.SKIPPED
        assert outcome.error.kind == "CardUnavailable"

    def test_actions_read_fresh_card_state(self, executor, make_rule, card, moved_to_done):
        # The payload says the card went to done but it has since moved back
        make_rule(actions=[{'type': 'add_automated_comment', 'config': {'text': 'Now in {{card.column}}'}}])

        executor.evaluate_rules_for_event(moved_to_done)

        assert CardComment.query.one().content.endswith("Now in To Do")


# ==============================================================================
# Matching at execution time
# ==============================================================================

class TestExecutionMatching:
    def test_notify_action_runs_exactly_once(self, executor, make_rule, card, user):
        make_rule(
            name="Notify owner on done",
            trigger_type="custom",
            trigger_config={
                'eventType': 'card_moved',
                'predicates': [{'field': 'toColumn', 'operator': 'equals', 'value': 'Done'}],
            },
            actions=[{'type': 'notify_card_creator', 'config': {'message': '{{card.title}} is done'}}],
        )
        event = Event(type=EventKind.CARD_MOVED, board_id="B1", card_id="C1", payload={'toColumn': 'Done'})

        with patch.object(NotificationService, "notify", wraps=NotificationService.notify) as mock_notify:
            [outcome] = executor.evaluate_rules_for_event(event)

        assert outcome.status is OutcomeStatus.SUCCEEDED
        assert mock_notify.call_count == 1
        assert Notification.query.one().message == "[Notify owner on done] Smith Residence is done"

    def test_rules_disabled_since_the_match_do_not_run(self, executor, make_rule, card, moved_to_done):
        rule = make_rule(actions=[tag('never')])
        rule.is_active = False
        db.session.commit()

        assert executor.evaluate_rules_for_event(moved_to_done) == []

    def test_rule_ids_limit_execution(self, executor, make_rule, card, moved_to_done):
        make_rule(name="A", actions=[tag('a')])
        chosen = make_rule(name="B", actions=[tag('b')])

        outcomes = executor.evaluate_rules_for_event(moved_to_done, rule_ids={chosen.id})

        assert [o.rule_id for o in outcomes] == [chosen.id]


# ==============================================================================
# Concurrency, isolation and timeouts
# ==============================================================================

class TestConcurrency:
    def test_rules_for_one_event_run_concurrently(self, executor, make_rule, card, moved_to_done,
                                                   register_handler):
        register_handler(BarrierAction(parties=2))
        make_rule(name="Left", actions=[{'type': 'test_barrier'}])
        make_rule(name="Right", actions=[{'type': 'test_barrier'}])

        outcomes = executor.evaluate_rules_for_event(moved_to_done)

        assert [o.status for o in outcomes] == [OutcomeStatus.SUCCEEDED, OutcomeStatus.SUCCEEDED]

    def test_concurrent_events_on_one_board_do_not_block_each_other(self, executor, make_rule, card,
                                                                    moved_to_done, register_handler):
        register_handler(BarrierAction(parties=2))
        make_rule(actions=[{'type': 'test_barrier'}])

        first = executor.dispatch(moved_to_done)
        second = executor.dispatch(moved_to_done)

        assert first.result(timeout=10)[0].status is OutcomeStatus.SUCCEEDED
        assert second.result(timeout=10)[0].status is OutcomeStatus.SUCCEEDED

    def test_failing_rule_does_not_affect_sibling(self, executor, make_rule, card, moved_to_done,
                                                  register_handler):
        register_handler(ExplodingAction())
        make_rule(name="Broken", actions=[{'type': 'test_explode'}])
        make_rule(name="Healthy", actions=[tag('ok')])

        outcomes = {o.rule_name: o for o in executor.evaluate_rules_for_event(moved_to_done)}
        refresh()

        assert outcomes["Broken"].status is OutcomeStatus.FAILED
        assert outcomes["Healthy"].status is OutcomeStatus.SUCCEEDED
        assert 'ok' in Card.query.get("C1").tags

    def test_rule_over_budget_times_out(self, executor, make_rule, card, moved_to_done,
                                        register_handler, monkeypatch):
        blocker = register_handler(BlockingAction())
        monkeypatch.setattr(executor, "rule_timeout", 0.2)
        rule = make_rule(actions=[{'type': 'test_block'}, tag('after-timeout')])

        try:
            [outcome] = executor.evaluate_rules_for_event(moved_to_done)
        finally:
            blocker.release.set()

        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.error.kind == "Timeout"
        assert executor.stats()["total_timed_out"] == 1

        executor.shutdown(wait=True)
        refresh()
        assert 'after-timeout' not in Card.query.get("C1").tags
        [log] = FlowRunLog.query.filter_by(rule_id=rule.id).all()
        assert log.error_type == "Timeout"

    def test_rule_finishing_at_the_deadline_is_recorded_once(self, executor, make_rule, card,
                                                             moved_to_done, monkeypatch):
        rule = make_rule(actions=[tag('just-in-time')])
        submit = executor._rule_pool.submit

        class DeadlineFuture:
            """Reports a timeout only after the worker has already finished."""

            def __init__(self, inner):
                self.inner = inner
                self.calls = 0

            def result(self, timeout=None):
                self.calls += 1
                value = self.inner.result()
                if self.calls == 1:
                    raise FutureTimeoutError()
                return value

        monkeypatch.setattr(executor._rule_pool, "submit", lambda *a, **kw: DeadlineFuture(submit(*a, **kw)))

        [outcome] = executor.evaluate_rules_for_event(moved_to_done)

        assert outcome.status is OutcomeStatus.SUCCEEDED
        assert executor.stats()["total_timed_out"] == 0
        refresh()
        [log] = FlowRunLog.query.filter_by(rule_id=rule.id).all()
        assert log.status is RunStatus.SUCCESS
        assert FlowRule.query.get(rule.id).run_count == 1

    def test_run_guard_has_a_single_winner(self):
        finished = RunGuard()
        assert finished.finish()
        assert not finished.abandon()

        abandoned = RunGuard()
        assert abandoned.abandon()
        assert abandoned.abandoned
        assert not abandoned.finish()


class TestDispatch:
    def test_dispatch_returns_a_future(self, executor, make_rule, card, moved_to_done):
        make_rule(actions=[tag('async')])

        future = executor.dispatch(moved_to_done)
        outcomes = future.result(timeout=10)

        assert isinstance(outcomes[0], ExecutionOutcome)
        assert executor.stats()["total_dispatched"] == 1

    def test_dispatch_after_shutdown_never_raises(self, executor, moved_to_done):
        executor.shutdown(wait=True)

        future = executor.dispatch(moved_to_done)

        assert future.result() == []
        assert executor.stats()["total_rejected"] == 1

    def test_unexpected_error_during_evaluation_resolves_empty(self, executor, moved_to_done):
        with patch.object(RuleStore, "load_rules_for_board", side_effect=Exception("unexpected")):
            future = executor.dispatch(moved_to_done)
            assert future.result(timeout=10) == []


# ==============================================================================
# Run history
# ==============================================================================

class TestRunLog:
    def test_successful_run_is_recorded(self, executor, make_rule, card, moved_to_done):
        rule = make_rule(actions=[tag('a'), tag('b')])

        [outcome] = executor.evaluate_rules_for_event(moved_to_done)
        refresh()

        log = FlowRunLog.query.get(outcome.run_id)
        assert log.status is RunStatus.SUCCESS
        assert (log.actions_total, log.actions_succeeded, log.actions_failed) == (2, 2, 0)
        assert log.triggered_by == "1"
        rule = FlowRule.query.get(rule.id)
        assert rule.run_count == 1
        assert rule.last_run_status == "success"
        assert rule.last_run_at is not None

    def test_partial_failure_is_recorded_as_partial(self, executor, make_rule, card, moved_to_done):
        make_rule(actions=[tag('a'), {'type': 'set_priority', 'config': {}}])

        [outcome] = executor.evaluate_rules_for_event(moved_to_done)
        refresh()

        log = FlowRunLog.query.get(outcome.run_id)
        assert log.status is RunStatus.PARTIAL
        assert log.error_message == "Priority is required"

    def test_skipped_run_is_recorded(self, executor, make_rule, card, moved_to_done):
        make_rule(conditions=[{'field': 'priority', 'operator': 'equals', 'value': 'low'}],
                  actions=[tag('never')])

        [outcome] = executor.evaluate_rules_for_event(moved_to_done)
        refresh()

        assert FlowRunLog.query.get(outcome.run_id).status is RunStatus.SKIPPED

    def test_run_log_write_failure_is_logged_not_raised(self, app, moved_to_done):
        from sqlalchemy.exc import OperationalError

        outcome = ExecutionOutcome(rule_id="R1", status=OutcomeStatus.SUCCEEDED, run_id="run-1")
        with patch.object(db.session, "add", side_effect=OperationalError("INSERT", {}, Exception("locked"))), \
                patch("flowauto.services.run_log_service.logger") as mock_logger:
            assert RunLogService.record(outcome, moved_to_done) is None

        mock_logger.error.assert_called_once()
