"""Unit tests for change report formatting and email delivery."""

import json

import httpx
import pytest

from pricecheck.models import PriceChange
from pricecheck.notify import (
    RESEND_API_URL,
    EmailNotifier,
    build_subject,
    format_changes_html,
    format_changes_text,
)


def price_change(confidence: float, new_value: float = 2.5, change_percent: float = -50.0) -> PriceChange:
    return PriceChange(
        provider="OpenAI",
        model="GPT-4o",
        field="input_per_million",
        old_value=5.0,
        new_value=new_value,
        change_percent=change_percent,
        confidence=confidence,
        source="https://openai.com/pricing",
    )


def test_subject_without_changes() -> None:
    assert build_subject([]) == "✅ LLM Pricing Check - No Changes Today"


def test_subject_counts_high_confidence_changes() -> None:
    changes = [price_change(0.95), price_change(0.9), price_change(0.7)]

    assert build_subject(changes) == "🚨 LLM Pricing Update: 3 changes (1 high-confidence)"
    assert build_subject(changes[:1]) == "🚨 LLM Pricing Update: 1 change (1 high-confidence)"


def test_html_report_lists_changes() -> None:
    html = format_changes_html([price_change(0.95), price_change(0.7, 6.0, 20.0)])

    assert html.startswith("<table")
    assert "<td" in html and "GPT-4o" in html
    assert "$5.00" in html and "$2.50" in html
    assert "↓ 50.0%" in html
    assert "↑ 20.0%" in html
    assert "95%" in html
    assert "Next Steps" in html


def test_empty_reports() -> None:
    assert format_changes_html([]) == "<p>No pricing changes detected today.</p>"
    assert format_changes_text([]) == "No pricing changes detected today."


def test_text_report_line() -> None:
    text = format_changes_text([price_change(0.95)])

    assert text == (
        "- OpenAI GPT-4o (input): $5.00 → $2.50 ↓ 50.0% "
        "[confidence 95%] https://openai.com/pricing"
    )


@pytest.mark.asyncio
async def test_notifier_without_config_is_disabled() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    notifier = EmailNotifier(api_key=None, recipient="ops@example.com", transport=httpx.MockTransport(handler))

    assert not notifier.enabled
    assert await notifier.send_report([price_change(0.95)]) is False


@pytest.mark.asyncio
async def test_notifier_posts_report() -> None:
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"id": "email-1"})

    notifier = EmailNotifier(
        api_key="re_test",
        recipient="ops@example.com",
        transport=httpx.MockTransport(handler),
    )

    sent = await notifier.send_report([price_change(0.95)])

    assert sent is True
    assert str(requests[0].url) == RESEND_API_URL
    assert requests[0].headers["Authorization"] == "Bearer re_test"
    body = json.loads(requests[0].content)
    assert body["to"] == ["ops@example.com"]
    assert body["subject"].startswith("🚨 LLM Pricing Update: 1 change")
    assert "<table" in body["html"]


@pytest.mark.asyncio
async def test_notifier_failure_is_not_fatal() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": "boom"})

    notifier = EmailNotifier(
        api_key="re_test",
        recipient="ops@example.com",
        transport=httpx.MockTransport(handler),
    )

    assert await notifier.send_report([]) is False


@pytest.mark.asyncio
async def test_extraction_notice_subjects() -> None:
    subjects = []

    def handler(request: httpx.Request) -> httpx.Response:
        subjects.append(json.loads(request.content)["subject"])
        return httpx.Response(200, json={"id": "email"})

    notifier = EmailNotifier(
        api_key="re_test",
        recipient="ops@example.com",
        transport=httpx.MockTransport(handler),
    )

    await notifier.send_extraction_notice("xAI", 0.95, True, 2)
    await notifier.send_extraction_notice("xAI", 0.7, False, 2, ["xAI - Grok 2: input: $2 → $3"])

    assert subjects == ["✅ Auto-published: xAI pricing", "⚠️ Review needed: xAI pricing"]
