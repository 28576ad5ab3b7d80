"""Mapping suggestions from raw extracted keys to canonical field names.

Suggestions come from an ordered list of (predicate, target) rules evaluated
top to bottom; the first matching rule wins and keys no rule matches are
suggested as UNMAPPED. Matching is case-insensitive on the raw key.

New heuristics are added by extending MAPPING_RULES (or passing a different
list), never by branching in code.
"""

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any

logger = logging.getLogger(__name__)

UNMAPPED = "unmapped"

# Canonical names offered in the review step, in display order
FIELD_TYPES: tuple[tuple[str, str], ...] = (
    ("vendor_name", "Vendor Name"),
    ("invoice_number", "Invoice Number"),
    ("invoice_date", "Invoice Date"),
    ("due_date", "Due Date"),
    ("total_amount", "Total Amount"),
    ("currency", "Currency"),
    (UNMAPPED, "Do Not Map"),
)

# Every scalar invoice column a mapped value can land in
INVOICE_FIELDS: frozenset[str] = frozenset(
    {
        "vendor_name",
        "invoice_number",
        "invoice_date",
        "due_date",
        "total_amount",
        "currency",
        "tax_amount",
        "subtotal",
        "discount_amount",
        "additional_fees",
        "payment_terms",
        "purchase_order_number",
        "billing_address",
        "shipping_address",
        "payment_method",
        "notes",
    }
)

KeyPredicate = Callable[[str], bool]
MappingRule = tuple[KeyPredicate, str]


def key_contains(*needles: str) -> KeyPredicate:
    """Predicate matching keys that contain any of the given substrings."""
    lowered = tuple(n.lower() for n in needles)

    def predicate(key: str) -> bool:
        return any(n in key for n in lowered)

    return predicate


MAPPING_RULES: tuple[MappingRule, ...] = (
    (key_contains("vendor"), "vendor_name"),
    (key_contains("amount", "total"), "total_amount"),
    (key_contains("date"), "invoice_date"),
    (key_contains("number"), "invoice_number"),
)


def suggest_mapping(key: str, rules: Sequence[MappingRule] = MAPPING_RULES) -> str:
    """Suggest a canonical name for one raw key.

    Args:
        key: Raw key from the extracted field set
        rules: Ordered rule list

    Returns:
        Target of the first matching rule, or UNMAPPED
    """
    lowered = key.lower()
    for predicate, target in rules:
        if predicate(lowered):
            return target
    return UNMAPPED


def suggest_mappings(
    keys: Iterable[str], rules: Sequence[MappingRule] = MAPPING_RULES
) -> dict[str, str]:
    """Suggest canonical names for a set of raw keys.

    Pure function of the key strings: identical input always yields
    identical output.

    Args:
        keys: Raw keys from the extracted field set
        rules: Ordered rule list (defaults to MAPPING_RULES)

    Returns:
        Mapping from raw key to suggested canonical name or UNMAPPED
    """
    return {key: suggest_mapping(key, rules) for key in keys}


def apply_mappings(
    raw: Mapping[str, Any],
    mapping: Mapping[str, str],
    exclusions: Iterable[str] = (),
) -> dict[str, Any]:
    """Copy raw values under their confirmed canonical names.

    Keys that are excluded, missing from the mapping, or mapped to UNMAPPED
    are dropped. Free-text targets are carried through verbatim. When two
    raw keys target the same name, the first one in raw-key order wins.

    Args:
        raw: Raw extracted field set
        mapping: Confirmed raw key to canonical name mapping
        exclusions: Raw keys to drop regardless of mapping

    Returns:
        Final field set keyed by canonical name
    """
    excluded = set(exclusions)
    result: dict[str, Any] = {}
    sources: dict[str, str] = {}

    for key, value in raw.items():
        if key in excluded:
            continue
        target = mapping.get(key, UNMAPPED).strip()
        if not target or target == UNMAPPED:
            continue
        if target in result:
            logger.info(
                f"Dropping '{key}': '{target}' already filled from '{sources[target]}'"
            )
            continue
        result[target] = value
        sources[target] = key

    return result


def resolve_mapping(
    raw_keys: Iterable[str],
    known_fields: Iterable[str] = (),
    overrides: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Build the mapping applied during upload.

    Raw keys that already equal a known canonical name (an invoice column or
    a user-defined field) map to themselves; everything else stays UNMAPPED
    unless the caller overrides it.

    Args:
        raw_keys: Raw keys from the extracted field set
        known_fields: User-defined canonical field names
        overrides: Caller-confirmed raw key to target assignments

    Returns:
        Mapping suitable for apply_mappings
    """
    known = INVOICE_FIELDS | set(known_fields)
    overrides = overrides or {}
    return {
        key: overrides.get(key, key if key in known else UNMAPPED) for key in raw_keys
    }
