"""
Matcher: decides which rules a given event triggers.

Read-only and bounded: one store read, then pure predicate evaluation.
"""
from dataclasses import dataclass
from typing import Iterable, List

from flowauto.flows.errors import MalformedCondition, StoreUnavailable
from flowauto.flows.store import Rule, default_store
from flowauto.flows.triggers import compile_trigger
from flowauto.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class MatchResult:
    rule_id: str
    rule_name: str

    def to_dict(self):
        return {'ruleId': self.rule_id, 'ruleName': self.rule_name}


def rule_matches(rule: Rule, event) -> bool:
    """
    True if ``rule`` is enabled, scoped to the event's board and its trigger
    condition holds.

    Raises:
        MalformedCondition: the rule's trigger cannot be compiled.
    """
    if not rule.enabled or rule.board_id != event.board_id:
        return False
    try:
        condition = compile_trigger(rule.trigger_type, rule.trigger_config)
    except MalformedCondition as e:
        e.rule_id = rule.id
        raise
    return condition.matches(event)


def match_rules(event, rules: Iterable[Rule]) -> List[Rule]:
    """Return the rules whose conditions hold, skipping malformed ones."""
    matched = []
    for rule in rules:
        try:
            if rule_matches(rule, event):
                matched.append(rule)
        except MalformedCondition as e:
            logger.warning(
                "Skipping rule with malformed trigger condition",
                rule_id=rule.id,
                rule_name=rule.name,
                trigger_type=rule.trigger_type,
                error=str(e),
            )
    return matched


def load_candidate_rules(board_id, store=None) -> List[Rule]:
    """Load a board's enabled rules, failing open to an empty list."""
    store = store or default_store
    try:
        return store.load_rules_for_board(board_id)
    except StoreUnavailable as e:
        logger.error("Rule store unavailable; treating as no matches", board_id=board_id, error=str(e))
        return []


def find_matching_rules(event, store=None) -> List[MatchResult]:
    """
    Return a MatchResult for every enabled rule on the event's board whose
    trigger condition holds. Never raises for store or rule problems.
    """
    rules = load_candidate_rules(event.board_id, store)
    matched = match_rules(event, rules)
    logger.debug(
        "Matched flow rules",
        board_id=event.board_id,
        event_type=event.type.value,
        candidates=len(rules),
        matched=len(matched),
    )
    return [MatchResult(rule_id=rule.id, rule_name=rule.name) for rule in matched]
