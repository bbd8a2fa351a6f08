"""
{{variable}} substitution in action config strings.

Unresolvable variables are left exactly as written; resolution never raises.
"""
import re
from datetime import datetime

from flowauto.logging_config import get_logger

logger = get_logger(__name__)

VARIABLE_PATTERN = re.compile(r"\{\{([^}]+)\}\}")
STEP_PATTERN = re.compile(r"^step\.(\d+)\.output\.(.+)$")

AVAILABLE_VARIABLES = [
    {'key': '{{card.title}}', 'label': 'Card title', 'category': 'card'},
    {'key': '{{card.description}}', 'label': 'Card description', 'category': 'card'},
    {'key': '{{card.assignee.name}}', 'label': 'Assignee name', 'category': 'card'},
    {'key': '{{card.assignee.email}}', 'label': 'Assignee email', 'category': 'card'},
    {'key': '{{card.creator.name}}', 'label': 'Card creator name', 'category': 'card'},
    {'key': '{{card.creator.email}}', 'label': 'Card creator email', 'category': 'card'},
    {'key': '{{card.priority}}', 'label': 'Priority level', 'category': 'card'},
    {'key': '{{card.column}}', 'label': 'Current column', 'category': 'card'},
    {'key': '{{card.tags}}', 'label': 'Tags (comma-separated)', 'category': 'card'},
    {'key': '{{card.due_date}}', 'label': 'Due date', 'category': 'card'},
    {'key': '{{card.url}}', 'label': 'Direct link to card', 'category': 'card'},
    {'key': '{{card.field.NAME}}', 'label': 'Custom field value', 'category': 'card'},
    {'key': '{{board.name}}', 'label': 'Board name', 'category': 'board'},
    {'key': '{{trigger.date}}', 'label': 'Date/time rule fired', 'category': 'trigger'},
    {'key': '{{trigger.user.name}}', 'label': 'User who triggered', 'category': 'trigger'},
    {'key': '{{step.0.output.KEY}}', 'label': 'Output from step 1', 'category': 'step'},
]


def _resolve(path, context):
    card, board = context.card, context.board

    if path == "card.title":
        return card.title
    if path == "card.description":
        return card.description or ""
    if path == "card.priority":
        return card.priority
    if path in ("card.column", "card.status"):
        return board.column_label(card.column)
    if path == "card.due_date":
        return card.due_date.isoformat() if card.due_date else ""
    if path == "card.tags":
        return ", ".join(card.tags)
    if path == "card.url":
        return context.card_url
    if path == "card.assignee.name":
        return card.primary_assignee.name if card.primary_assignee else ""
    if path == "card.assignee.email":
        return (card.primary_assignee.email or "") if card.primary_assignee else ""
    if path == "card.creator.name":
        return card.creator.name if card.creator else ""
    if path == "card.creator.email":
        return (card.creator.email or "") if card.creator else ""
    if path.startswith("card.field."):
        return card.custom_fields.get(path[len("card.field."):], "")
    if path == "board.name":
        return board.name
    if path == "trigger.date":
        return datetime.utcnow().strftime("%b %d, %Y %H:%M")
    if path == "trigger.user.name":
        return context.event.payload.get("userName", "")

    step = STEP_PATTERN.match(path)
    if step:
        output = context.previous_outputs.get(f"step.{step.group(1)}")
        if isinstance(output, dict):
            return output.get(step.group(2))
    return None


def resolve_variables(template: str, context) -> str:
    def replace(match):
        path = match.group(1).strip()
        try:
            value = _resolve(path, context)
        except Exception as e:
            logger.debug("Variable resolution failed", variable=path, error=str(e))
            return match.group(0)
        return match.group(0) if value is None else str(value)

    return VARIABLE_PATTERN.sub(replace, template)


def resolve_config(config, context):
    """Resolve variables in every top-level string value of an action config."""
    return {
        key: resolve_variables(value, context) if isinstance(value, str) else value
        for key, value in (config or {}).items()
    }
