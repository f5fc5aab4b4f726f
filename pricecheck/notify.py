"""Change report formatting and email delivery"""

from html import escape
from typing import List, Optional, Sequence
import httpx
import structlog

from pricecheck.models import PriceChange

logger = structlog.get_logger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
HIGH_CONFIDENCE = 0.9

_CELL = "padding: 10px; border: 1px solid #e5e7eb;"
_HEAD = "padding: 12px; border: 1px solid #e5e7eb;"


def _field_label(field: str) -> str:
    return field.replace("_per_million", "")


def build_subject(changes: Sequence[PriceChange]) -> str:
    """
    Email subject for a daily change report

    Example:
        >>> build_subject([])
        '✅ LLM Pricing Check - No Changes Today'
    """
    if not changes:
        return "✅ LLM Pricing Check - No Changes Today"

    high_confidence = sum(1 for c in changes if c.confidence > HIGH_CONFIDENCE)
    plural = "s" if len(changes) > 1 else ""
    return (
        f"🚨 LLM Pricing Update: {len(changes)} change{plural} "
        f"({high_confidence} high-confidence)"
    )


def format_changes_text(changes: Sequence[PriceChange]) -> str:
    """Plain-text change list, one line per change"""
    if not changes:
        return "No pricing changes detected today."

    lines = []
    for change in changes:
        arrow = "↑" if change.change_percent > 0 else "↓"
        lines.append(
            f"- {change.provider} {change.model} ({_field_label(change.field)}): "
            f"${change.old_value:.2f} → ${change.new_value:.2f} "
            f"{arrow} {abs(change.change_percent)}% "
            f"[confidence {change.confidence * 100:.0f}%] {change.source}"
        )
    return "\n".join(lines)


def format_changes_html(changes: Sequence[PriceChange]) -> str:
    """HTML table of changes followed by the review checklist"""
    if not changes:
        return "<p>No pricing changes detected today.</p>"

    headers = ["Provider", "Model", "Field", "Old", "New", "Change", "Conf."]
    parts = [
        '<table style="border-collapse: collapse; width: 100%; font-family: Arial, sans-serif;">',
        '<thead><tr style="background: #f3f4f6;">',
    ]
    for position, header in enumerate(headers):
        align = "left" if position < 3 else "right"
        parts.append(f'<th style="{_HEAD} text-align: {align};">{header}</th>')
    parts.append("</tr></thead><tbody>")

    for change in changes:
        increase = change.change_percent > 0
        color = "#ef4444" if increase else "#10b981"
        arrow = "↑" if increase else "↓"
        parts.append(
            "<tr>"
            f'<td style="{_CELL}">{escape(change.provider)}</td>'
            f'<td style="{_CELL}">{escape(change.model)}</td>'
            f'<td style="{_CELL}">{_field_label(change.field)}</td>'
            f'<td style="{_CELL} text-align: right;">${change.old_value:.2f}</td>'
            f'<td style="{_CELL} text-align: right; font-weight: bold;">${change.new_value:.2f}</td>'
            f'<td style="{_CELL} text-align: right; color: {color}; font-weight: bold;">'
            f"{arrow} {abs(change.change_percent)}%</td>"
            f'<td style="{_CELL} text-align: right;">{change.confidence * 100:.0f}%</td>'
            "</tr>"
        )

    parts.append("</tbody></table>")
    parts.append(
        '<div style="margin-top: 20px; padding: 15px; background: #eff6ff; '
        'border-left: 4px solid #3b82f6;">'
        "<strong>Next Steps:</strong><ul>"
        "<li>Review changes above</li>"
        "<li>Verify against source URLs</li>"
        "<li>Approve to update the pricing database</li>"
        "</ul></div>"
    )
    return "".join(parts)


class EmailNotifier:
    """
    Sends change reports through the Resend HTTP API

    Without an API key or recipient the notifier is disabled and every send
    is a logged no-op. Delivery failures are logged and never raised.
    """

    def __init__(
        self,
        api_key: Optional[str],
        recipient: Optional[str],
        sender: str = "LLM PriceCheck <noreply@llmpricecheck.com>",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.recipient = recipient
        self.sender = sender
        self.timeout = timeout
        self.transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.recipient)

    async def send(
        self, subject: str, html: Optional[str] = None, text: Optional[str] = None
    ) -> bool:
        """
        Send one email

        Returns:
            True if the API accepted the message
        """
        if not self.enabled:
            logger.info("email_config_missing_skipping_notification", subject=subject)
            return False

        payload = {"from": self.sender, "to": [self.recipient], "subject": subject}
        if html is not None:
            payload["html"] = html
        if text is not None:
            payload["text"] = text

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.post(
                    RESEND_API_URL,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("email_notification_failed", subject=subject, error=str(e))
            return False

        logger.info("email_sent", subject=subject, recipient=self.recipient)
        return True

    async def send_report(self, changes: List[PriceChange]) -> bool:
        """Send the daily change report"""
        return await self.send(
            build_subject(changes),
            html=format_changes_html(changes),
            text=format_changes_text(changes),
        )

    async def send_extraction_notice(
        self,
        provider: str,
        confidence: float,
        published: bool,
        model_count: int,
        diff_lines: Sequence[str] = (),
    ) -> bool:
        """Tell the operator whether an extraction went live or waits for review"""
        if published:
            subject = f"✅ Auto-published: {provider} pricing"
        else:
            subject = f"⚠️ Review needed: {provider} pricing"

        body = [
            f"Provider: {provider}",
            f"Confidence: {confidence}",
            f"Models: {model_count}",
            "",
            "Changes:",
        ]
        body.extend(f"- {line}" for line in diff_lines)
        if not diff_lines:
            body.append("- none")

        return await self.send(subject, text="\n".join(body))


def build_notifier(config, transport: Optional[httpx.AsyncBaseTransport] = None) -> EmailNotifier:
    return EmailNotifier(
        api_key=config.resend_api_key,
        recipient=config.alert_email,
        sender=config.alert_sender,
        transport=transport,
    )
