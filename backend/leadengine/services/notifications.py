"""Notification service - Slack webhook alerts for hot leads and conversions."""

import httpx
import structlog

logger = structlog.get_logger()


async def send_slack_notification(
    webhook_url: str,
    text: str,
    blocks: list | None = None,
) -> bool:
    """Send a notification via Slack incoming webhook."""
    if not webhook_url:
        logger.info("slack_notification_skipped_no_webhook")
        return False

    payload: dict = {"text": text}
    if blocks:
        payload["blocks"] = blocks

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            resp = await client.post(webhook_url, json=payload)
            resp.raise_for_status()
        logger.info("slack_notification_sent", text=text[:100])
        return True
    except httpx.HTTPError as e:
        logger.error("slack_notification_failed", error=str(e))
        return False


def format_hot_lead_notification(lead) -> tuple[str, list]:
    """Slack message for a lead that scored as qualified."""
    name = lead.full_name or lead.email
    text = f"Hot lead: {name} from {lead.company} (score {lead.score})"
    factors = "\n".join(f"• {f}" for f in (lead.score_factors or [])[:6]) or "No factors"
    blocks = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": "Hot Inbound Lead"}
        },
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Name:* {name}"},
                {"type": "mrkdwn", "text": f"*Company:* {lead.company}"},
                {"type": "mrkdwn", "text": f"*Title:* {lead.title or 'Unknown'}"},
                {"type": "mrkdwn", "text": f"*Score:* {lead.score}"},
                {"type": "mrkdwn", "text": f"*Source:* {lead.source.value}"},
                {"type": "mrkdwn", "text": f"*Region:* {lead.region or 'Unknown'}"},
            ]
        },
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"*Signals:*\n{factors}"}
        },
    ]
    return text, blocks


def format_conversion_notification(lead, result) -> tuple[str, list]:
    """Slack message for a lead converted into an account + deal."""
    text = f"Lead converted: {result.deal_name}"
    blocks = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": "Lead Converted"}
        },
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Account:* {result.account_name}"
                                           f"{' (new)' if result.created_account else ''}"},
                {"type": "mrkdwn", "text": f"*Deal:* {result.deal_name}"},
                {"type": "mrkdwn", "text": f"*Stage:* {result.deal_stage}"},
                {"type": "mrkdwn", "text": f"*Owner:* {lead.assigned_ae_id or 'Unassigned'}"},
            ]
        },
    ]
    return text, blocks
