"""Price normalization utilities - convert declared units to USD per 1M tokens"""

from enum import Enum
import re
from typing import Optional, Union
import structlog

logger = structlog.get_logger(__name__)

NumericType = Union[int, float, str]


class Unit(str, Enum):
    """Unit a source declares its prices in"""

    PER_MILLION = "per_million"
    PER_THOUSAND = "per_1k"

    @classmethod
    def parse(cls, value: Union["Unit", str, None]) -> "Unit":
        """
        Map a declared unit to a Unit, defaulting to per-million

        Example:
            >>> Unit.parse("1K")
            <Unit.PER_THOUSAND: 'per_1k'>
            >>> Unit.parse("tokens")
            <Unit.PER_MILLION: 'per_million'>
        """
        if isinstance(value, Unit):
            return value
        if not value:
            return cls.PER_MILLION

        key = re.sub(r"[\s_\-/]+", "", str(value).lower())
        if key in _THOUSAND_ALIASES:
            return cls.PER_THOUSAND
        if key not in _MILLION_ALIASES:
            logger.debug("unknown_unit_defaulted", unit=value)
        return cls.PER_MILLION


_THOUSAND_ALIASES = {"per1k", "1k", "k", "perthousand", "thousand", "per1000", "1000"}
_MILLION_ALIASES = {"per1m", "1m", "m", "permillion", "million", "per1000000", "mtok"}

# API vendor keys are lowercase; we want proper display casing
PROVIDER_DISPLAY_NAMES = {
    "openai": "OpenAI",
    "anthropic": "Anthropic",
    "google": "Google",
    "meta": "Meta",
    "mistral": "Mistral",
    "amazon": "Amazon",
    "deepseek": "DeepSeek",
    "minimax": "MiniMax",
    "moonshot ai": "Moonshot AI",
    "moonshot": "Moonshot AI",
    "moonshot-ai": "Moonshot AI",
    "xai": "xAI",
    "cohere": "Cohere",
    "qwen": "Qwen",
}


def to_float(value: Optional[NumericType]) -> Optional[float]:
    """
    Safely convert a value to float

    Args:
        value: Numeric value (int, float or numeric string)

    Returns:
        float or None if conversion fails
    """
    if value is None or isinstance(value, bool):
        return None

    try:
        result = float(str(value).strip().lstrip("$"))
    except (ValueError, TypeError) as e:
        logger.warning("price_conversion_failed", value=value, error=str(e))
        return None

    if result != result or result in (float("inf"), float("-inf")):
        logger.warning("price_conversion_failed", value=value, error="not finite")
        return None

    return result


def per1k_to_per1m(value: Optional[NumericType]) -> Optional[float]:
    """
    Convert per-1K tokens price to per-1M tokens

    Example:
        >>> per1k_to_per1m(2.5)
        2500.0
    """
    price = to_float(value)
    if price is None:
        return None

    return price * 1000


def per1m_passthrough(value: Optional[NumericType]) -> Optional[float]:
    """Pass through per-1M value (just convert to float)"""
    return to_float(value)


def normalize_price(
    raw_price: Optional[NumericType], declared_unit: Union[Unit, str, None]
) -> Optional[float]:
    """
    Normalize a raw price to USD per 1M tokens

    Unknown units are treated as already per-million. Never raises;
    unparsable prices come back as None.

    Example:
        >>> normalize_price(2.5, "per_1k")
        2500.0
        >>> normalize_price(2.5, "per_million")
        2.5
    """
    if Unit.parse(declared_unit) is Unit.PER_THOUSAND:
        return per1k_to_per1m(raw_price)
    return per1m_passthrough(raw_price)


def canonical_provider_name(vendor: Optional[str]) -> str:
    """
    Map a vendor key to its display name, passing unknown vendors through

    Example:
        >>> canonical_provider_name("openai")
        'OpenAI'
        >>> canonical_provider_name("Groq")
        'Groq'
    """
    if not vendor:
        return ""

    cleaned = vendor.strip()
    return PROVIDER_DISPLAY_NAMES.get(cleaned.lower(), cleaned)


def provider_slug(name: str) -> str:
    """
    Derive the provider id used as the dataset key

    Example:
        >>> provider_slug("Moonshot AI")
        'moonshot-ai'
    """
    return re.sub(r"\s+", "-", name.strip().lower())


def is_price_reasonable(
    input_price: Optional[float],
    output_price: Optional[float],
    min_price: float = 0.0,
    max_price: float = 1000.0,
) -> bool:
    """
    Sanity check if prices are within reasonable bounds

    Args:
        input_price: Input price per 1M tokens
        output_price: Output price per 1M tokens
        min_price: Minimum reasonable price (default 0)
        max_price: Maximum reasonable price (default $1000 per 1M)

    Returns:
        True if prices are reasonable
    """
    for label, price in (("input", input_price), ("output", output_price)):
        if price is not None and not (min_price <= price <= max_price):
            logger.warning(
                "unreasonable_price",
                field=label,
                price=price,
                min=min_price,
                max=max_price,
            )
            return False

    return True


def calculate_price_change_percent(
    old_price: Optional[float], new_price: Optional[float]
) -> Optional[float]:
    """
    Calculate percentage change between two prices

    Returns:
        Percentage change, or None if calculation not possible

    Example:
        >>> calculate_price_change_percent(5.0, 6.0)
        20.0
    """
    if old_price is None or new_price is None:
        return None

    if old_price == 0:
        return None

    return (new_price - old_price) / old_price * 100
