"""Normalize raw rows from any adapter into the canonical record shape."""

import math
import re
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from app.schemas.records import (
    SCORE_MAX,
    SCORE_MIN,
    SEVERITY_VALUES,
    UNKNOWN_SEVERITY,
    NormalizedRecord,
)
from app.services.errors import NormalizationError

_EMPTY_STR = ""
# Cell contents that scanners use for "no value".
_PLACEHOLDERS = frozenset({"-", "n/a", "na", "none", "null"})

# Canonical field -> source column aliases, in priority order. Aliases are compared
# after canonicalize_key(); the first alias with a non-empty value wins.
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "cve_id": (
        "cve_id", "cve", "cveid", "cve_ids", "vulnerability_id", "vulnerabilityid",
        "vuln_id", "vulnerability", "vulnerability.name", "vulnerability.@id", "id",
    ),
    "product": (
        "product", "product_name", "products.0.@id", "products.0",
        "metadata.component.name", "affects.0.ref", "target", "asset", "image",
    ),
    "component": (
        "component", "component_name", "package", "package_name", "pkg", "pkgname",
        "library", "products.0.subcomponents.0.@id", "affects.0.ref",
    ),
    "original_severity": (
        "original_severity", "severity", "scanner_severity", "sev", "risk",
        "ratings.0.severity", "cvss_severity",
    ),
    "original_vector": (
        "original_vector", "vector", "cvss_vector", "vector_string", "ratings.0.vector",
    ),
    "original_score": (
        "original_score", "score", "cvss_score", "cvss", "base_score", "cvss_base_score",
        "ratings.0.score",
    ),
    "disposition_summary": (
        "disposition_summary", "disposition", "status", "vex_status",
        "analysis.state", "state",
    ),
    "rationale": (
        "rationale", "impact_statement", "analysis.detail", "justification",
        "analysis.justification", "status_notes", "notes",
    ),
}

# Severity aliases (case-insensitive) -> vocabulary level.
_SEVERITY_ALIASES: dict[str, str] = {
    "critical": "CRITICAL",
    "crit": "CRITICAL",
    "high": "HIGH",
    "important": "HIGH",
    "medium": "MEDIUM",
    "med": "MEDIUM",
    "moderate": "MEDIUM",
    "low": "LOW",
    "minor": "LOW",
    "info": "INFO",
    "informational": "INFO",
    "informative": "INFO",
    "none": "INFO",
}

# CVSS band lower bounds -> severity, highest first (used when the severity column is missing or empty).
_CVSS_TO_SEVERITY: list[tuple[float, str]] = [
    (9.0, "CRITICAL"),
    (7.0, "HIGH"),
    (4.0, "MEDIUM"),
    (0.1, "LOW"),
    (0.0, "INFO"),
]

# CVE: CVE-YEAR-NNNNN+ (4+ digits after second hyphen).
_CVE_PATTERN = re.compile(r"CVE-\d{4}-\d{4,}", re.IGNORECASE)
# GHSA: GHSA-xxxx-xxxx-xxxx (4 alphanumeric groups).
_GHSA_PATTERN = re.compile(r"GHSA-[a-z0-9]{4}-[a-z0-9]{4}-[a-z0-9]{4}", re.IGNORECASE)

# CVSS vectors: optional "CVSS:3.1/" prefix, then METRIC:VALUE pairs separated by "/".
# Covers v2 ("AV:N/AC:L/Au:N/..."), v3.x and v4.0.
_VECTOR_PATTERN = re.compile(
    r"(CVSS:\d\.\d/)?[A-Za-z]{1,4}:[A-Za-z0-9]+(/[A-Za-z]{1,4}:[A-Za-z0-9]+)*"
)

_KEY_SEPARATORS = re.compile(r"[\s_\-]+")

MAX_VULN_ID_LENGTH = 255


def canonicalize_key(key: Any) -> str:
    """'Original Severity' / 'original-severity' / ' ORIGINAL_SEVERITY ' -> 'original_severity'."""
    return _KEY_SEPARATORS.sub("_", str(key).strip().lower()).strip("_")


def _text(value: Any) -> str:
    """Render a raw cell value as stripped text; None -> ''."""
    if value is None:
        return _EMPTY_STR
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float) and value.is_integer():
        # Spreadsheet cells hold whole numbers as floats ("2019.0").
        return str(int(value))
    return str(value).strip()


def resolve_fields(values: Mapping[str, Any]) -> dict[str, Any]:
    """Pick each canonical field's raw value from a row via FIELD_ALIASES. Unknown columns are ignored."""
    by_key: dict[str, Any] = {}
    for key, value in values.items():
        by_key.setdefault(canonicalize_key(key), value)
    resolved: dict[str, Any] = {}
    for target, aliases in FIELD_ALIASES.items():
        for alias in aliases:
            value = by_key.get(alias)
            if value is not None and _text(value):
                resolved[target] = value
                break
    return resolved


def severity_from_score(score: float | None) -> str | None:
    """Map a CVSS score to a severity level via the standard bands; None when no score."""
    if score is None or not SCORE_MIN <= score <= SCORE_MAX:
        return None
    for lower_bound, sev in _CVSS_TO_SEVERITY:
        if score >= lower_bound:
            return sev
    return None


def normalize_severity(raw_severity: Any, score: float | None = None) -> str:
    """
    Map a raw severity to the vocabulary (case-insensitive, with aliases).

    Missing severity falls back to the score band; anything unrecognized is UNKNOWN.
    """
    text = _text(raw_severity)
    if text:
        upper = text.upper()
        if upper in SEVERITY_VALUES:
            return upper
        return _SEVERITY_ALIASES.get(text.lower(), UNKNOWN_SEVERITY)
    return severity_from_score(score) or UNKNOWN_SEVERITY


def parse_score(raw_score: Any) -> float | None:
    """
    Parse a score; accepts numbers and strings with a decimal comma ("7,3").
    Empty -> None. Out-of-range or unparseable values raise NormalizationError (never clamped).
    """
    if raw_score is None:
        return None
    if isinstance(raw_score, bool):
        raise NormalizationError("original_score", f"not a number: {raw_score!r}")
    if isinstance(raw_score, (int, float)):
        score = float(raw_score)
    else:
        text = _text(raw_score)
        if not text or text.lower() in _PLACEHOLDERS:
            return None
        try:
            score = float(text.replace(",", "."))
        except ValueError as e:
            raise NormalizationError("original_score", f"not a number: {text!r}") from e
    if math.isnan(score) or not SCORE_MIN <= score <= SCORE_MAX:
        raise NormalizationError(
            "original_score", f"{score} is outside {SCORE_MIN}-{SCORE_MAX}"
        )
    return score


def is_cvss_vector(value: str) -> bool:
    """True if value has the shape of a CVSS vector (not semantically validated)."""
    return _VECTOR_PATTERN.fullmatch(value.strip()) is not None


def extract_cve(text: str | None) -> str | None:
    """Return the first CVE identifier found in text, or None. Bounded to MAX_VULN_ID_LENGTH."""
    if not text or not isinstance(text, str):
        return None
    match = _CVE_PATTERN.search(text)
    if not match:
        return None
    value = match.group(0)
    if len(value) > MAX_VULN_ID_LENGTH:
        return None
    return value


def extract_ghsa(text: str | None) -> str | None:
    """Return the first GHSA identifier found in text, or None. Bounded to MAX_VULN_ID_LENGTH."""
    if not text or not isinstance(text, str):
        return None
    match = _GHSA_PATTERN.search(text)
    if not match:
        return None
    value = match.group(0)
    if len(value) > MAX_VULN_ID_LENGTH:
        return None
    return value


def resolve_vulnerability_id(raw_id: Any) -> str:
    """
    Return a CVE/GHSA-shaped identifier for raw_id: the value itself when it has that
    shape, else the first id embedded in it (e.g. an advisory URL). CVE ids are upper-cased.
    """
    text = _text(raw_id)
    if not text:
        raise NormalizationError("cve_id", "missing")
    if _CVE_PATTERN.fullmatch(text):
        return text.upper()
    if _GHSA_PATTERN.fullmatch(text):
        return "GHSA" + text[4:].lower()
    cve = extract_cve(text)
    if cve:
        return cve.upper()
    ghsa = extract_ghsa(text)
    if ghsa:
        return "GHSA" + ghsa[4:].lower()
    raise NormalizationError("cve_id", f"not a CVE or GHSA identifier: {text[:80]!r}")


def normalize_row(values: Mapping[str, Any]) -> NormalizedRecord:
    """
    Convert one raw row into the scanner layer of a record.

    Raises NormalizationError naming the offending field when the row must be skipped:
    missing cve_id/product, malformed identifier, bad score, or malformed vector.
    """
    fields = resolve_fields(values)

    cve_id = resolve_vulnerability_id(fields.get("cve_id"))
    product = _text(fields.get("product"))
    if not product:
        raise NormalizationError("product", "missing")

    original_score = parse_score(fields.get("original_score"))
    original_severity = normalize_severity(fields.get("original_severity"), original_score)

    original_vector = _text(fields.get("original_vector"))
    if original_vector.lower() in _PLACEHOLDERS:
        original_vector = _EMPTY_STR
    if original_vector and not is_cvss_vector(original_vector):
        raise NormalizationError(
            "original_vector", f"not a CVSS vector: {original_vector[:80]!r}"
        )

    try:
        return NormalizedRecord(
            cve_id=cve_id,
            product=product,
            component=_text(fields.get("component")),
            original_severity=original_severity,
            original_vector=original_vector,
            original_score=original_score,
            disposition_summary=_text(fields.get("disposition_summary")),
            rationale=_text(fields.get("rationale")),
        )
    except ValidationError as e:
        first = e.errors()[0]
        field = str(first["loc"][0]) if first.get("loc") else "row"
        raise NormalizationError(field, first.get("msg", "invalid value")) from e
