"""Client for the third-party pricing aggregator JSON endpoint"""

from typing import Any, Dict, List, Optional
import httpx
import structlog

from pricecheck.errors import NetworkError, ValidationError
from pricecheck.utils import clamp_timeout

logger = structlog.get_logger(__name__)

DEFAULT_URL = "https://www.llm-prices.com/current-v1.json"


class AggregatorClient:
    """Client for the aggregator's single price-list endpoint"""

    def __init__(
        self,
        url: str = DEFAULT_URL,
        timeout: float = 15.0,
        user_agent: str = "LLM-PriceCheck/1.0",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize aggregator client

        Args:
            url: Endpoint returning an array (or ``{prices: [...]}``) of rows
            timeout: Request timeout in seconds (clamped to 15-60)
            user_agent: User-Agent header value
            transport: Optional httpx transport (used by tests)
        """
        self.url = url
        self.timeout = clamp_timeout(timeout)

        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            headers={"User-Agent": user_agent, "Accept": "application/json"},
            transport=transport,
        )

    async def list_prices(self) -> List[Dict[str, Any]]:
        """
        Fetch all price rows from the aggregator

        Returns:
            List of raw row dictionaries

        Raises:
            NetworkError: On timeouts, transport failures and non-2xx responses
            ValidationError: If the body is not JSON or not a list of rows
        """
        logger.info("fetching_aggregator_prices", url=self.url)

        try:
            response = await self._client.get(self.url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "aggregator_http_error", url=self.url, status=e.response.status_code
            )
            raise NetworkError(
                f"HTTP {e.response.status_code} from aggregator",
                url=self.url,
                status=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            logger.error("failed_to_fetch_aggregator", url=self.url, error=str(e))
            raise NetworkError(f"Aggregator request failed: {e}", url=self.url) from e

        try:
            data = response.json()
        except ValueError as e:
            raise ValidationError("Aggregator returned invalid JSON") from e

        prices = data.get("prices", data) if isinstance(data, dict) else data
        if not isinstance(prices, list):
            raise ValidationError("Aggregator payload is not a list of prices", data)

        logger.info("aggregator_prices_fetched", count=len(prices))
        return prices

    async def aclose(self):
        """Close the HTTP client"""
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
