"""
Site settings

Pricing knobs live in the ``site_settings`` collection as key/value rows
so the admin panel can change them; environment variables supply the
defaults when a row is missing or unparsable.
"""
import os
import logging
from dataclasses import dataclass

from database import get_documents

logger = logging.getLogger(__name__)

DEFAULT_DELIVERY_FEE = float(os.getenv("DEFAULT_DELIVERY_FEE", "50"))
DEFAULT_FREE_DELIVERY_THRESHOLD = float(os.getenv("FREE_DELIVERY_THRESHOLD", "999"))

PRICING_KEYS = ("delivery_fee", "free_delivery_threshold")


@dataclass
class PricingSettings:
    delivery_fee: float = DEFAULT_DELIVERY_FEE
    free_delivery_threshold: float = DEFAULT_FREE_DELIVERY_THRESHOLD


def load_pricing_settings(database) -> PricingSettings:
    values = {}
    for row in database.site_settings.find({"key": {"$in": list(PRICING_KEYS)}}):
        try:
            values[row["key"]] = float(row.get("value"))
        except (TypeError, ValueError):
            logger.warning("Ignoring non-numeric site setting %s=%r", row["key"], row.get("value"))
    return PricingSettings(
        delivery_fee=values.get("delivery_fee", DEFAULT_DELIVERY_FEE),
        free_delivery_threshold=values.get("free_delivery_threshold", DEFAULT_FREE_DELIVERY_THRESHOLD),
    )


def get_settings_map(database) -> dict:
    return {row["key"]: row.get("value") for row in get_documents("site_settings", database=database)}
