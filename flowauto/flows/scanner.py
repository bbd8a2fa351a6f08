"""
Scheduled trigger scan.

Due-date and stuck-in-column triggers have no user action behind them, so a
periodic job builds synthetic events for every qualifying card and
dispatches those that match. A rule fires at most once per card, event type
and UTC day.
"""
from datetime import datetime, time as dt_time

from sqlalchemy.exc import SQLAlchemyError

from flowauto.flows.errors import StoreUnavailable
from flowauto.flows.events import Event, EventKind
from flowauto.flows.matcher import match_rules
from flowauto.flows.store import default_store
from flowauto.logging_config import get_logger

logger = get_logger(__name__)

SCHEDULED_TRIGGER_TYPES = ("due_date_approaching", "due_date_passed", "card_stuck_in_column")


def _max_days_before(rules):
    days = [2]
    for rule in rules:
        if rule.trigger_type == "due_date_approaching":
            try:
                days.append(int(float(rule.trigger_config.get("daysBefore") or 2)))
            except (TypeError, ValueError):
                continue
    return max(days)


def events_for_card(card, now, max_days_before):
    """Synthetic scheduled events for one Card row at ``now``."""
    events = []
    today = now.date()

    def build(kind, **payload):
        return Event(type=kind, board_id=card.board_id, card_id=card.id,
                     triggered_by="scheduler", payload=payload)

    if card.due_date is not None:
        days_until = (card.due_date - today).days
        if 0 <= days_until <= max_days_before:
            events.append(build(EventKind.DUE_DATE_APPROACHING,
                                dueDate=card.due_date.isoformat(), daysBefore=days_until))
        elif days_until < 0:
            events.append(build(EventKind.DUE_DATE_PASSED,
                                dueDate=card.due_date.isoformat(), daysOverdue=-days_until))

    entered = card.column_entered_at or card.created_at
    if entered is not None:
        days_in_column = (now - entered).days
        if days_in_column >= 1:
            events.append(build(EventKind.CARD_STUCK_IN_COLUMN,
                                columnId=card.column, daysInColumn=days_in_column))
    return events


def _already_ran_today(rule_id, event, now):
    from flowauto.models import FlowRunLog

    start_of_day = datetime.combine(now.date(), dt_time.min)
    return FlowRunLog.query.filter(
        FlowRunLog.rule_id == rule_id,
        FlowRunLog.card_id == event.card_id,
        FlowRunLog.event_type == event.type.value,
        FlowRunLog.triggered_at >= start_of_day,
    ).first() is not None


def scan_scheduled_triggers(now=None, executor=None, store=None):
    """
    Dispatch scheduled events for every board that has an enabled scheduled
    rule. Must run inside an app context.

    Returns:
        list of (Event, rule_ids) pairs that were dispatched
    """
    from flowauto.models import Card, FlowRule, db

    if executor is None:
        from flowauto.flows import get_executor
        executor = get_executor()
    store = store or default_store
    now = now or datetime.utcnow()

    try:
        board_ids = [
            row[0] for row in db.session.query(FlowRule.board_id).filter(
                FlowRule.is_active.is_(True),
                FlowRule.trigger_type.in_(SCHEDULED_TRIGGER_TYPES),
            ).distinct().all()
        ]
    except SQLAlchemyError as e:
        logger.error("Scheduled scan could not read rules", error=str(e))
        return []

    dispatched = []
    for board_id in board_ids:
        try:
            rules = [r for r in store.load_rules_for_board(board_id)
                     if r.trigger_type in SCHEDULED_TRIGGER_TYPES]
        except StoreUnavailable as e:
            logger.error("Scheduled scan skipped board", board_id=board_id, error=str(e))
            continue

        max_days_before = _max_days_before(rules)
        cards = Card.query.filter(Card.board_id == board_id, Card.archived_at.is_(None)).all()
        for card in cards:
            for event in events_for_card(card, now, max_days_before):
                rule_ids = {
                    rule.id for rule in match_rules(event, rules)
                    if not _already_ran_today(rule.id, event, now)
                }
                if not rule_ids:
                    continue
                executor.dispatch(event, rule_ids=rule_ids)
                dispatched.append((event, rule_ids))

    logger.info("Scheduled trigger scan complete", boards=len(board_ids), dispatched=len(dispatched))
    return dispatched
