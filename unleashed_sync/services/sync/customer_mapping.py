"""Map Unleashed customers and contacts onto Shopify customers."""

from __future__ import annotations

import logging

from unleashed_sync.services.sync.models import (
    IDENTICAL_DATA,
    ItemOutcome,
    MappingError,
    MappingResult,
    fold_outcomes,
)
from unleashed_sync.services.sync.normalizers import clean_text, is_valid_email, split_name

logger = logging.getLogger(__name__)

METAFIELD_NAMESPACE = "unleashed"
PLACEHOLDER_EMAIL_DOMAIN = "placeholder.com"
DEFAULT_PRICE_TIER = "Default"


def _metafield(key: str, value: str) -> dict:
    return {
        "namespace": METAFIELD_NAMESPACE,
        "key": key,
        "type": "single_line_text_field",
        "value": value,
    }


def _full_name(first: str | None, last: str | None) -> str:
    return f"{clean_text(first)} {clean_text(last)}".strip().lower()


def build_source_records(customers: list[dict], contacts: list[dict] | None = None) -> list[dict]:
    """Flatten customers and their contacts into customer-shaped records.

    Each contact becomes its own record carrying its company's code, name and
    price tier. Customers with no contacts are kept as records of their own.
    """
    by_key: dict[str, dict] = {}
    for customer in customers:
        for key in (customer.get("Guid"), customer.get("CustomerCode")):
            if key:
                by_key[key] = customer

    records: list[dict] = []
    covered: set[str] = set()
    for contact in contacts or []:
        company = by_key.get(contact.get("CustomerGuid")) or by_key.get(contact.get("CustomerCode")) or {}
        customer_code = contact.get("CustomerCode") or company.get("CustomerCode")
        if customer_code:
            covered.add(customer_code)
        records.append(
            {
                "kind": "contact",
                "code": contact.get("Guid"),
                "customer_code": customer_code,
                "customer_name": contact.get("CustomerName") or company.get("CustomerName"),
                "price_tier": contact.get("SellPriceTier") or company.get("SellPriceTier"),
                "email": contact.get("EmailAddress") or contact.get("Email"),
                "first_name": contact.get("FirstName"),
                "last_name": contact.get("LastName"),
                "display_name": contact.get("DisplayName") or contact.get("ContactName"),
                "phone": contact.get("OfficePhone") or contact.get("MobilePhone") or contact.get("PhoneNumber"),
            }
        )

    for customer in customers:
        code = customer.get("CustomerCode")
        if code in covered:
            continue
        records.append(
            {
                "kind": "customer",
                "code": code,
                "customer_code": code,
                "customer_name": customer.get("CustomerName"),
                "price_tier": customer.get("SellPriceTier"),
                "email": customer.get("Email") or customer.get("EmailAddress"),
                "first_name": customer.get("ContactFirstName"),
                "last_name": customer.get("ContactLastName"),
                "display_name": customer.get("CustomerName"),
                "phone": customer.get("PhoneNumber") or customer.get("MobilePhone"),
            }
        )
    return records


def build_customer(record: dict) -> dict:
    code = clean_text(record.get("code"))
    if not code:
        raise ValueError("Customer record has no code")

    first_name = clean_text(record.get("first_name"))
    last_name = clean_text(record.get("last_name"))
    if not first_name and not last_name:
        first_name, last_name = split_name(record.get("display_name"))

    email = clean_text(record.get("email")) or f"{code}@{PLACEHOLDER_EMAIL_DOMAIN}"

    metafields = [
        _metafield("customer_code", clean_text(record.get("customer_code")) or code),
        _metafield(
            "customer_name",
            clean_text(record.get("customer_name")) or clean_text(record.get("display_name")) or code,
        ),
        _metafield("sell_price_tier", clean_text(record.get("price_tier")) or DEFAULT_PRICE_TIER),
    ]
    if record.get("kind") == "contact":
        metafields.append(_metafield("contact_guid", code))

    return {
        "source_id": code,
        "firstName": first_name,
        "lastName": last_name,
        "email": email,
        "phone": clean_text(record.get("phone")) or None,
        "metafields": metafields,
    }


def compare_customer(customer: dict, existing: dict) -> list[str]:
    differences = []
    for name in ("firstName", "lastName"):
        if clean_text(customer.get(name)) != clean_text(existing.get(name)):
            differences.append(f'{name}: "{existing.get(name)}" → "{customer.get(name)}"')

    if clean_text(customer.get("email")).lower() != clean_text(existing.get("email")).lower():
        differences.append(f'email: "{existing.get("email")}" → "{customer.get("email")}"')

    if clean_text(customer.get("phone")) != clean_text(existing.get("phone")):
        differences.append(f'phone: "{existing.get("phone")}" → "{customer.get("phone")}"')

    stored = existing.get("metafields") or {}
    for metafield in customer["metafields"]:
        key = f'{metafield["namespace"]}.{metafield["key"]}'
        if stored.get(key) != metafield["value"]:
            differences.append(f'metafield {key}: "{stored.get(key)}" → "{metafield["value"]}"')
    return differences


class CustomerMapper:
    def __init__(self, destination_customers: list[dict]):
        self.destination = destination_customers
        self._by_email: dict[str, dict] = {}
        self._by_name: dict[str, dict] = {}
        self._by_code: dict[str, dict] = {}
        self._by_contact: dict[str, dict] = {}
        for customer in destination_customers:
            email = clean_text(customer.get("email")).lower()
            if email:
                self._by_email.setdefault(email, customer)
            name = _full_name(customer.get("firstName"), customer.get("lastName"))
            if name:
                self._by_name.setdefault(name, customer)
            metafields = customer.get("metafields") or {}
            if metafields.get("unleashed.customer_code"):
                self._by_code.setdefault(metafields["unleashed.customer_code"], customer)
            if metafields.get("unleashed.contact_guid"):
                self._by_contact.setdefault(metafields["unleashed.contact_guid"], customer)

    def find_match(self, customer: dict, kind: str | None = None) -> tuple[dict | None, str | None]:
        match = self._by_email.get(customer["email"].lower())
        if match:
            return match, "email"
        name = _full_name(customer["firstName"], customer["lastName"])
        if name:
            match = self._by_name.get(name)
            if match:
                return match, "name"
        by_code = self._by_contact if kind == "contact" else self._by_code
        match = by_code.get(customer["source_id"])
        if match:
            return match, "metafield"
        return None, None

    def map_record(self, record: dict) -> ItemOutcome:
        customer = build_customer(record)
        code = customer["source_id"]
        if not is_valid_email(customer["email"]):
            return ItemOutcome.error(code, f"Invalid email format: {customer['email']}", field="email")

        match, matched_by = self.find_match(customer, record.get("kind"))
        if match is None:
            return ItemOutcome.create(code, customer)

        differences = compare_customer(customer, match)
        if not differences:
            return ItemOutcome.skip(code, IDENTICAL_DATA)

        customer.update({"id": match["id"], "matched_by": matched_by, "differences": differences})
        return ItemOutcome.update(code, customer)


def map_customers(
    customers: list[dict],
    shopify_customers: list[dict],
    contacts: list[dict] | None = None,
) -> MappingResult:
    if not isinstance(customers, list) or not isinstance(shopify_customers, list):
        raise MappingError("customers must be lists")
    if contacts is not None and not isinstance(contacts, list):
        raise MappingError("contacts must be a list")

    records = build_source_records(customers, contacts)
    logger.info(
        "CUSTOMER_MAPPING_START records=%d contacts=%d shopify_customers=%d",
        len(records),
        len(contacts or []),
        len(shopify_customers),
    )
    mapper = CustomerMapper(shopify_customers)
    result = MappingResult(entity="customers")
    result.details["source_count"] = len(records)
    result.details["destination_count"] = len(shopify_customers)
    fold_outcomes(result, records, mapper.map_record, key=lambda r: r.get("code") or "<missing>")

    logger.info(
        "CUSTOMER_MAPPING_COMPLETE create=%d update=%d skipped=%d errors=%d",
        len(result.to_create),
        len(result.to_update),
        len(result.skipped),
        len(result.errors),
    )
    return result
