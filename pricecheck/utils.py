"""Utility functions"""

import yaml
from pathlib import Path
from typing import Dict, Any, List, Union
import structlog

from pricecheck.errors import ValidationError

logger = structlog.get_logger(__name__)

PACKAGE_DATA_DIR = Path(__file__).parent / "data"


def load_yaml_config(filepath: Union[str, Path]) -> Dict[str, Any]:
    """
    Load YAML configuration file

    Args:
        filepath: Path to YAML file

    Returns:
        Parsed YAML as dictionary
    """
    try:
        path = Path(filepath)
        if not path.exists():
            logger.warning("yaml_file_not_found", filepath=str(filepath))
            return {}

        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
            logger.info("yaml_config_loaded", filepath=str(filepath))
            return data or {}

    except (OSError, yaml.YAMLError) as e:
        logger.error("failed_to_load_yaml", filepath=str(filepath), error=str(e))
        return {}


def load_verified_table() -> Dict[str, Any]:
    """Load the hand-verified pricing table shipped with the package"""
    return load_yaml_config(PACKAGE_DATA_DIR / "verified_pricing.yml")


def load_batch_file(filepath: Union[str, Path]) -> List[Dict[str, Any]]:
    """
    Load a batch of extraction targets

    The file holds a list of URL strings or ``{url, provider}`` objects.
    JSON is valid YAML, so both formats are accepted.

    Raises:
        ValidationError: If the file is missing or not a list
    """
    path = Path(filepath)
    if not path.exists():
        raise ValidationError(f"Batch file not found: {filepath}")

    with open(path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValidationError(f"Batch file is not valid JSON/YAML: {e}") from e

    if not isinstance(data, list):
        raise ValidationError("Batch file must contain a list of URL objects")

    items = []
    for entry in data:
        if isinstance(entry, str):
            items.append({"url": entry, "provider": None})
        elif isinstance(entry, dict) and entry.get("url"):
            items.append({"url": entry["url"], "provider": entry.get("provider")})
        else:
            logger.warning("batch_entry_skipped", entry=entry)

    return items


def clamp_timeout(seconds: float, low: float = 15.0, high: float = 60.0) -> float:
    """Keep network timeouts inside the supported 15-60 second window"""
    return max(low, min(high, float(seconds)))
