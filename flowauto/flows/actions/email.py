import html

import requests
from flask import current_app

from flowauto.flows.actions.base import ActionHandler, ActionResult, register_action
from flowauto.logging_config import get_logger

logger = get_logger(__name__)

EMAIL_TEMPLATE = (
    '<div style="font-family: sans-serif; max-width: 560px; margin: 0 auto; padding: 40px 20px;">'
    '{body}'
    '<hr style="border: none; border-top: 1px solid #eee; margin: 32px 0;" />'
    '<p style="color: #999; font-size: 12px;">Sent automatically by Flow Automation</p>'
    '</div>'
)


def render_html(body):
    return EMAIL_TEMPLATE.format(body=html.escape(body).replace("\n", "<br />"))


@register_action
class SendEmail(ActionHandler):
    """
    Send an email through the HTTP email API.

    Config:
        mode: 'card_contact' (default) sends to the card's client email,
              'custom' sends to customEmail
        subject, body: may contain {{variables}}
    """
    kind = "send_email"
    label = "Send email"
    category = "integration"
    required_config = {"subject": "Subject is required", "body": "Body is required"}

    def validate(self, config):
        errors = super().validate(config)
        if config.get("mode") == "custom" and not config.get("customEmail"):
            errors.append("Email address is required for custom mode")
        return errors

    def execute(self, config, context):
        if config.get("mode") == "custom":
            to_email = config["customEmail"]
        else:
            to_email = context.card.client_email
            if not to_email:
                return ActionResult.failed("Card has no contact email")

        api_key = current_app.config.get("EMAIL_API_KEY")
        if not api_key:
            return ActionResult.failed("EMAIL_API_KEY not configured")

        payload = {
            'from': current_app.config.get("EMAIL_FROM"),
            'to': to_email,
            'subject': config["subject"],
            'html': render_html(config["body"]),
        }
        try:
            response = requests.post(
                current_app.config["EMAIL_API_URL"],
                json=payload,
                headers={'Authorization': f'Bearer {api_key}'},
                timeout=current_app.config.get("EMAIL_TIMEOUT_SECONDS", 10),
            )
            response.raise_for_status()
        except requests.exceptions.HTTPError as http_err:
            try:
                detail = http_err.response.json().get("message")
            except ValueError:
                detail = None
            message = detail or http_err.response.reason or str(http_err)
            logger.error("Email send failed", to=to_email, status_code=http_err.response.status_code,
                         rule_id=context.rule.id)
            return ActionResult.failed(f"Email send failed: {message}")
        except requests.exceptions.RequestException as err:
            logger.error("Email service error", to=to_email, error=str(err), rule_id=context.rule.id)
            return ActionResult.failed(f"Email service error: {err}")

        logger.info("Email sent by automation", to=to_email, rule_id=context.rule.id)
        return ActionResult.ok(sentTo=to_email)
