"""Field normalizers shared by the Unleashed → Shopify mappers.

Pure helpers: handle generation, email validation, default warehouse
selection, country/province code lookup and the stock-quantity resolver.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Any, TypeVar
from urllib.parse import urlparse

T = TypeVar("T")

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Source field names for "available quantity", highest priority first.
QUANTITY_FIELDS: tuple[str, ...] = (
    "QuantityAvailable",
    "QtyAvailable",
    "AvailableQty",
    "QuantityOnHand",
    "QtyOnHand",
)


# -----------------------------------------------------------------------------
# Lookup tables
# -----------------------------------------------------------------------------

COUNTRY_CODE_MAPPING: Mapping[str, str] = MappingProxyType(
    {
        "Australia": "AU",
        "United States": "US",
        "Canada": "CA",
        "United Kingdom": "GB",
        "New Zealand": "NZ",
    }
)

PROVINCE_CODE_MAPPING: Mapping[str, str] = MappingProxyType(
    {
        # Australia
        "New South Wales": "NSW",
        "Victoria": "VIC",
        "Queensland": "QLD",
        "Western Australia": "WA",
        "South Australia": "SA",
        "Tasmania": "TAS",
        "Northern Territory": "NT",
        "Australian Capital Territory": "ACT",
        # United States
        "Alabama": "AL",
        "Alaska": "AK",
        "Arizona": "AZ",
        "Arkansas": "AR",
        "California": "CA",
        "Colorado": "CO",
        "Connecticut": "CT",
        "Delaware": "DE",
        "Florida": "FL",
        "Georgia": "GA",
        "Hawaii": "HI",
        "Idaho": "ID",
        "Illinois": "IL",
        "Indiana": "IN",
        "Iowa": "IA",
        "Kansas": "KS",
        "Kentucky": "KY",
        "Louisiana": "LA",
        "Maine": "ME",
        "Maryland": "MD",
        "Massachusetts": "MA",
        "Michigan": "MI",
        "Minnesota": "MN",
        "Mississippi": "MS",
        "Missouri": "MO",
        "Montana": "MT",
        "Nebraska": "NE",
        "Nevada": "NV",
        "New Hampshire": "NH",
        "New Jersey": "NJ",
        "New Mexico": "NM",
        "New York": "NY",
        "North Carolina": "NC",
        "North Dakota": "ND",
        "Ohio": "OH",
        "Oklahoma": "OK",
        "Oregon": "OR",
        "Pennsylvania": "PA",
        "Rhode Island": "RI",
        "South Carolina": "SC",
        "South Dakota": "SD",
        "Tennessee": "TN",
        "Texas": "TX",
        "Utah": "UT",
        "Vermont": "VT",
        "Virginia": "VA",
        "Washington": "WA",
        "West Virginia": "WV",
        "Wisconsin": "WI",
        "Wyoming": "WY",
        # Canada
        "Alberta": "AB",
        "British Columbia": "BC",
        "Manitoba": "MB",
        "New Brunswick": "NB",
        "Newfoundland and Labrador": "NL",
        "Northwest Territories": "NT",
        "Nova Scotia": "NS",
        "Nunavut": "NU",
        "Ontario": "ON",
        "Prince Edward Island": "PE",
        "Quebec": "QC",
        "Saskatchewan": "SK",
        "Yukon": "YT",
    }
)


def _map_lookup(mapping: Mapping[str, T], value: Any, default: T) -> T:
    if isinstance(value, str):
        return mapping.get(value, default)
    return default


def map_country_code(country: str | None, mapping: Mapping[str, str] = COUNTRY_CODE_MAPPING) -> str | None:
    """Exact-match lookup; unmapped values pass through unchanged."""
    if not country:
        return None
    return _map_lookup(mapping, country, country)


def map_province_code(region: str | None, mapping: Mapping[str, str] | None = None) -> str | None:
    """Province codes pass through unless a lookup table is supplied."""
    if not region:
        return None
    if mapping is None:
        return region
    return _map_lookup(mapping, region, region)


# -----------------------------------------------------------------------------
# Text helpers
# -----------------------------------------------------------------------------

def slugify(text: Any) -> str:
    value = str(text).lower().strip()
    value = re.sub(r"\s+", "-", value)
    value = re.sub(r"[^\w\-]+", "", value)
    value = re.sub(r"-{2,}", "-", value)
    return value.strip("-")


def is_valid_email(email: str | None) -> bool:
    return bool(email) and EMAIL_PATTERN.match(email) is not None


def validate_email(email: str | None) -> str:
    """Return the email unchanged or raise ValueError."""
    if not is_valid_email(email):
        raise ValueError(f"Invalid email format: {email}")
    return email  # type: ignore[return-value]


def clean_text(value: Any) -> str:
    """Strip a value to text; None and the literal "null" become empty."""
    if value is None:
        return ""
    text = str(value).strip()
    if text.lower() == "null":
        return ""
    return text


def split_name(display_name: str | None) -> tuple[str, str]:
    """Split a display name on the first whitespace run."""
    parts = clean_text(display_name).split(None, 1)
    if not parts:
        return "", ""
    if len(parts) == 1:
        return parts[0], ""
    return parts[0], parts[1]


def image_filename(url: str | None) -> str:
    """Last path segment of an image URL, query string stripped."""
    if not url:
        return ""
    path = urlparse(url).path
    return path.rstrip("/").rsplit("/", 1)[-1]


def format_price(value: Any) -> str:
    try:
        return f"{float(value or 0):.2f}"
    except (TypeError, ValueError):
        return "0.00"


def to_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


# -----------------------------------------------------------------------------
# Warehouses / stock
# -----------------------------------------------------------------------------

def get_default_warehouse_code(warehouses: Iterable[dict] | None) -> str | None:
    """Pick the tenant's default warehouse code.

    Preference order: the warehouse flagged ``IsDefault``, then the one coded
    ``MAIN``, then the first warehouse. Returns None for an empty list.
    """
    warehouses = list(warehouses or [])
    if not warehouses:
        return None
    default = (
        next((w for w in warehouses if w.get("IsDefault")), None)
        or next((w for w in warehouses if (w.get("WarehouseCode") or "").upper() == "MAIN"), None)
        or warehouses[0]
    )
    return default.get("WarehouseCode") or None


def resolve_quantity(stock: Mapping[str, Any], fields: Iterable[str] = QUANTITY_FIELDS) -> float:
    """Return the first populated quantity field of a stock entry, else 0."""
    for name in fields:
        value = stock.get(name)
        if value is None or value == "":
            continue
        try:
            return float(value)
        except (TypeError, ValueError):
            continue
    return 0.0


def resolve_warehouse_code(stock: Mapping[str, Any]) -> str | None:
    code = stock.get("WarehouseCode")
    if not code:
        warehouse = stock.get("Warehouse")
        if isinstance(warehouse, Mapping):
            code = warehouse.get("WarehouseCode")
    return code or None


def location_gid(location_id: str | int | None) -> str | None:
    if location_id is None or location_id == "":
        return None
    value = str(location_id)
    if value.startswith("gid://"):
        return value
    return f"gid://shopify/Location/{value}"
