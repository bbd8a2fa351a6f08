from flowauto.flows.actions import action_registry
from flowauto.flows.conditions import parse_card_filters
from flowauto.flows.errors import MalformedCondition, ValidationError
from flowauto.flows.store import ActionSpec
from flowauto.flows.triggers import compile_trigger
from flowauto.logging_config import get_logger

logger = get_logger(__name__)

DEFINITION_FIELDS = ("trigger", "triggerType", "triggerConfig", "conditions", "actions")


class RuleService:
    """Create, update and delete FlowRule rows."""

    @staticmethod
    def validate_definition(trigger, conditions, actions):
        """
        Check that a rule definition can be compiled and executed.

        Returns:
            list: Human-readable problems, empty when the definition is valid
        """
        errors = []

        if not isinstance(trigger, dict) or not trigger.get("type"):
            errors.append("trigger.type is required")
        else:
            try:
                compile_trigger(trigger["type"], trigger.get("config") or {})
            except MalformedCondition as e:
                errors.append(str(e))

        try:
            parse_card_filters(conditions)
        except MalformedCondition as e:
            errors.append(str(e))

        if not isinstance(actions, list) or not actions:
            errors.append("At least one action is required")
            return errors

        for position, raw in enumerate(actions):
            try:
                action = ActionSpec.from_dict(raw, position)
            except ValueError as e:
                errors.append(str(e))
                continue
            handler = action_registry.get(action.kind)
            if handler is None:
                errors.append(f"action #{position}: Unknown action type: {action.kind}")
                continue
            errors.extend(f"action #{position} ({action.kind}): {problem}"
                          for problem in handler.validate(action.config))
        return errors

    @staticmethod
    def _clean_name(value, message):
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(message)
        return value.strip()

    @staticmethod
    def _clean_flag(value, key):
        if not isinstance(value, bool):
            raise ValidationError(f"{key} must be true or false")
        return value

    @staticmethod
    def _clean_description(value):
        if value is not None and not isinstance(value, str):
            raise ValidationError("description must be text")
        return value

    @staticmethod
    def _merged_definition(rule, data):
        """
        The trigger, conditions and actions a PATCH body would leave the rule
        with. ``trigger`` replaces both type and config; ``triggerType`` and
        ``triggerConfig`` replace one each.
        """
        trigger = {"type": rule.trigger_type, "config": rule.trigger_config or {}}
        if "trigger" in data:
            trigger = data["trigger"]
        else:
            if "triggerType" in data:
                trigger = dict(trigger, type=data["triggerType"])
            if "triggerConfig" in data:
                trigger = dict(trigger, config=data["triggerConfig"])

        conditions = data["conditions"] if "conditions" in data else (rule.conditions or [])
        actions = data["actions"] if "actions" in data else (rule.actions or [])
        return trigger, conditions, actions

    @staticmethod
    def create_rule(board, data, created_by=None):
        """
        Create a rule on ``board`` from an API payload. New rules start
        disabled unless ``isActive`` is true.

        Raises:
            ValidationError: if the payload is incomplete or the definition is invalid
        """
        from flowauto.models import FlowRule, db

        name = RuleService._clean_name(data.get("name"), "name is required")
        is_active = RuleService._clean_flag(data.get("isActive", False), "isActive")
        description = RuleService._clean_description(data.get("description"))

        trigger = data.get("trigger") or {}
        conditions = data.get("conditions") or []
        actions = data.get("actions") or []

        errors = RuleService.validate_definition(trigger, conditions, actions)
        if errors:
            raise ValidationError("; ".join(errors))

        rule = FlowRule(
            workspace_id=board.workspace_id,
            board_id=board.id,
            name=name,
            description=description,
            is_active=is_active,
            trigger_type=trigger["type"],
            trigger_config=trigger.get("config") or {},
            conditions=conditions,
            actions=actions,
            created_by=created_by,
        )
        db.session.add(rule)
        db.session.commit()

        logger.info("Flow rule created", rule_id=rule.id, board_id=board.id,
                    trigger_type=rule.trigger_type, actions=len(actions), is_active=is_active)
        return rule

    @staticmethod
    def update_rule(rule, data):
        """
        Apply a partial update. Definition changes (trigger, conditions,
        actions) are validated as a whole before anything is assigned.

        Raises:
            ValidationError: on a bad field type or an invalid definition
        """
        from flowauto.models import db

        changes = {}
        if "name" in data:
            changes["name"] = RuleService._clean_name(data["name"], "name cannot be empty")
        if "description" in data:
            changes["description"] = RuleService._clean_description(data["description"])
        if "isActive" in data:
            changes["is_active"] = RuleService._clean_flag(data["isActive"], "isActive")

        if any(key in data for key in DEFINITION_FIELDS):
            trigger, conditions, actions = RuleService._merged_definition(rule, data)
            errors = RuleService.validate_definition(trigger, conditions, actions)
            if errors:
                raise ValidationError("; ".join(errors))
            changes.update(
                trigger_type=trigger["type"],
                trigger_config=trigger.get("config") or {},
                conditions=conditions or [],
                actions=actions,
            )

        for attr, value in changes.items():
            setattr(rule, attr, value)

        if changes:
            db.session.commit()
            logger.info("Flow rule updated", rule_id=rule.id, changes=sorted(changes))
        return rule

    @staticmethod
    def delete_rule(rule):
        from flowauto.models import db

        rule_id = rule.id
        db.session.delete(rule)
        db.session.commit()
        logger.info("Flow rule deleted", rule_id=rule_id)
