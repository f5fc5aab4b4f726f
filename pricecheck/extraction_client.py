"""HTTP client for documentation pages and the chat-completion extraction API"""

import json
import re
from typing import Any, Dict, Optional
import httpx
from bs4 import BeautifulSoup
import structlog

from pricecheck.errors import NetworkError, ValidationError
from pricecheck.utils import clamp_timeout

logger = structlog.get_logger(__name__)

STRIPPED_TAGS = ["script", "style", "noscript", "nav", "footer", "header"]


def html_to_text(html: str, max_chars: Optional[int] = None) -> str:
    """
    Strip markup from a documentation page

    Args:
        html: Raw HTML
        max_chars: Truncate the cleaned text to this many characters

    Returns:
        Plain text with collapsed blank lines
    """
    soup = BeautifulSoup(html, "lxml")

    for tag in soup(STRIPPED_TAGS):
        tag.decompose()

    text = soup.get_text(separator="\n")
    text = re.sub(r"[ \t\xa0]+", " ", text)
    text = re.sub(r"\s*\n\s*", "\n", text)
    text = text.strip()

    if max_chars is not None:
        text = text[:max_chars]

    return text


class ExtractionClient:
    """Fetches pages and runs structured-output completions"""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        model: str = "gpt-4-turbo",
        completion_timeout: float = 60.0,
        page_timeout: float = 30.0,
        user_agent: str = "LLM-PriceCheck/1.0",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize extraction client

        Args:
            api_key: Extraction API key
            base_url: OpenAI-compatible API base URL (e.g. https://api.openai.com/v1)
            model: Completion model name
            completion_timeout: Timeout for completion requests in seconds
            page_timeout: Timeout for page fetches in seconds
            user_agent: User-Agent for page fetches
            transport: Optional httpx transport (used by tests)
        """
        if not api_key or not base_url:
            raise ValidationError(
                "Missing EXTRACTION_API_KEY or EXTRACTION_BASE_URL environment variables"
            )

        self.base_url = base_url.rstrip("/")
        self.model = model
        self.completion_timeout = clamp_timeout(completion_timeout)
        self.page_timeout = clamp_timeout(page_timeout)

        self._client = httpx.AsyncClient(
            headers={"User-Agent": user_agent},
            transport=transport,
            follow_redirects=True,
        )
        self._auth_headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    async def fetch_page(self, url: str) -> str:
        """
        Fetch a documentation page

        Raises:
            NetworkError: On request errors
        """
        logger.info("fetching_page", url=url)

        try:
            response = await self._client.get(
                url,
                headers={"Accept": "text/html, */*"},
                timeout=self.page_timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NetworkError(
                f"HTTP {e.response.status_code} fetching {url}",
                url=url,
                status=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            logger.error("failed_to_fetch_page", url=url, error=str(e))
            raise NetworkError(f"Failed to fetch {url}: {e}", url=url) from e

        logger.info("page_fetched", url=url, chars=len(response.text))
        return response.text

    async def complete_json(
        self, system_prompt: str, user_prompt: str, temperature: float = 0.1
    ) -> Dict[str, Any]:
        """
        Run a chat completion that must answer with a JSON object

        Returns:
            Parsed JSON object from the first choice

        Raises:
            NetworkError: On request errors
            ValidationError: If the response is not a JSON object
        """
        url = f"{self.base_url}/chat/completions"
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
            "response_format": {"type": "json_object"},
        }

        logger.info("requesting_extraction", model=self.model)

        try:
            response = await self._client.post(
                url,
                json=payload,
                headers=self._auth_headers,
                timeout=self.completion_timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "extraction_api_error",
                status=e.response.status_code,
                body=e.response.text[:500],
            )
            raise NetworkError(
                f"LLM API error: {e.response.status_code}",
                url=url,
                status=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            logger.error("extraction_request_failed", error=str(e))
            raise NetworkError(f"LLM API request failed: {e}", url=url) from e

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ValidationError("Malformed completion response") from e

        if not content:
            raise ValidationError("No response content from LLM")

        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as e:
            raise ValidationError("LLM returned malformed JSON", content[:500]) from e

        if not isinstance(parsed, dict):
            raise ValidationError("LLM response is not a JSON object", parsed)

        logger.info("extraction_response_received")
        return parsed

    async def aclose(self):
        """Close the HTTP client"""
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
