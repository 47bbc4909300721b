"""Unit tests for app.services.normalize: aliasing, severity mapping, score and id rules."""

import unittest

from app.services.errors import NormalizationError
from app.services.normalize import (
    canonicalize_key,
    extract_cve,
    extract_ghsa,
    is_cvss_vector,
    normalize_row,
    normalize_severity,
    parse_score,
    resolve_vulnerability_id,
    severity_from_score,
)


def _row(**overrides: object) -> dict[str, object]:
    row: dict[str, object] = {
        "CVE": "CVE-2024-1234",
        "Product": "payments-api",
        "Severity": "High",
    }
    row.update(overrides)
    return row


class TestColumnAliases(unittest.TestCase):
    def test_canonicalize_key(self) -> None:
        self.assertEqual(canonicalize_key(" Original Severity "), "original_severity")
        self.assertEqual(canonicalize_key("cvss-base--score"), "cvss_base_score")

    def test_header_variants_map_to_canonical_fields(self) -> None:
        record = normalize_row(
            {
                "Vulnerability ID": "cve-2024-1234",
                "Product Name": "payments-api",
                "Package": "openssl",
                "Scanner Severity": "crit",
                "CVSS Vector": "CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:H/A:H",
                "CVSS Score": "9,8",
                "Status": "affected",
                "Notes": "Reachable from the public API.",
                "Unrelated Column": "ignored",
            }
        )
        self.assertEqual(record.cve_id, "CVE-2024-1234")
        self.assertEqual(record.product, "payments-api")
        self.assertEqual(record.component, "openssl")
        self.assertEqual(record.original_severity, "CRITICAL")
        self.assertEqual(record.original_score, 9.8)
        self.assertEqual(record.disposition_summary, "affected")
        self.assertEqual(record.rationale, "Reachable from the public API.")

    def test_first_non_empty_alias_wins(self) -> None:
        record = normalize_row(
            {"CVE": "CVE-2024-1234", "Product": "api", "Severity": "", "Sev": "low"}
        )
        self.assertEqual(record.original_severity, "LOW")

    def test_optional_fields_default_to_empty_string(self) -> None:
        record = normalize_row(_row())
        self.assertEqual(record.component, "")
        self.assertEqual(record.original_vector, "")
        self.assertEqual(record.disposition_summary, "")
        self.assertEqual(record.rationale, "")
        self.assertIsNone(record.original_score)

    def test_openvex_flattened_keys(self) -> None:
        record = normalize_row(
            {
                "vulnerability.name": "CVE-2024-0001",
                "products.0.@id": "pkg:oci/app",
                "status": "not_affected",
                "justification": "vulnerable_code_not_in_execute_path",
            }
        )
        self.assertEqual(record.product, "pkg:oci/app")
        self.assertEqual(record.disposition_summary, "not_affected")
        self.assertEqual(record.original_severity, "UNKNOWN")


class TestSeverity(unittest.TestCase):
    def test_case_insensitive_vocabulary(self) -> None:
        for raw, expected in [("critical", "CRITICAL"), ("HIGH", "HIGH"), ("Medium", "MEDIUM"), ("info", "INFO")]:
            self.assertEqual(normalize_severity(raw), expected)

    def test_synonyms(self) -> None:
        self.assertEqual(normalize_severity("moderate"), "MEDIUM")
        self.assertEqual(normalize_severity("Important"), "HIGH")
        self.assertEqual(normalize_severity("informational"), "INFO")

    def test_unrecognized_is_unknown_not_failure(self) -> None:
        self.assertEqual(normalize_severity("urgent-ish"), "UNKNOWN")
        record = normalize_row(_row(Severity="P1"))
        self.assertEqual(record.original_severity, "UNKNOWN")

    def test_missing_severity_derived_from_score(self) -> None:
        self.assertEqual(normalize_severity("", 9.0), "CRITICAL")
        self.assertEqual(normalize_severity(None, 7.0), "HIGH")
        self.assertEqual(normalize_severity(None, 4.0), "MEDIUM")
        self.assertEqual(normalize_severity(None, 0.1), "LOW")
        self.assertEqual(normalize_severity(None, 0.0), "INFO")
        self.assertEqual(normalize_severity(None, None), "UNKNOWN")

    def test_severity_from_score_band_edges(self) -> None:
        self.assertEqual(severity_from_score(8.99), "HIGH")
        self.assertEqual(severity_from_score(10.0), "CRITICAL")
        self.assertIsNone(severity_from_score(None))


class TestScore(unittest.TestCase):
    def test_decimal_comma_and_numbers(self) -> None:
        self.assertEqual(parse_score("7,3"), 7.3)
        self.assertEqual(parse_score(5), 5.0)
        self.assertEqual(parse_score(" 10.0 "), 10.0)

    def test_empty_and_placeholders_are_none(self) -> None:
        self.assertIsNone(parse_score(None))
        self.assertIsNone(parse_score(""))
        self.assertIsNone(parse_score("N/A"))

    def test_out_of_range_is_rejected_not_clamped(self) -> None:
        for raw in ("10.1", "-0.5", 11, "nan"):
            with self.assertRaises(NormalizationError) as ctx:
                parse_score(raw)
            self.assertEqual(ctx.exception.field, "original_score")

    def test_text_is_rejected(self) -> None:
        with self.assertRaises(NormalizationError):
            parse_score("high")

    def test_row_with_bad_score_is_rejected(self) -> None:
        with self.assertRaises(NormalizationError) as ctx:
            normalize_row(_row(Score="12"))
        self.assertEqual(ctx.exception.field, "original_score")


class TestVector(unittest.TestCase):
    def test_cvss_shapes(self) -> None:
        self.assertTrue(is_cvss_vector("CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:H/A:H"))
        self.assertTrue(is_cvss_vector("AV:N/AC:L/Au:N/C:P/I:P/A:P"))
        self.assertTrue(is_cvss_vector("CVSS:4.0/AV:N/AC:L/AT:N/PR:N/UI:N/VC:H/VI:H/VA:H/SC:N/SI:N/SA:N"))
        self.assertTrue(
            is_cvss_vector("CVSS:4.0/AV:N/AC:L/AT:N/PR:N/UI:N/VC:H/VI:H/VA:H/SC:N/SI:N/SA:N/S:P/U:Amber")
        )
        self.assertTrue(
            is_cvss_vector("CVSS:4.0/AV:L/AC:H/AT:P/PR:L/UI:A/VC:L/VI:N/VA:N/SC:N/SI:N/SA:N/U:Clear/R:U")
        )
        self.assertFalse(is_cvss_vector("network reachable"))

    def test_malformed_vector_rejects_row(self) -> None:
        with self.assertRaises(NormalizationError) as ctx:
            normalize_row(_row(Vector="remote code execution"))
        self.assertEqual(ctx.exception.field, "original_vector")

    def test_cvss4_supplemental_vector_keeps_row(self) -> None:
        vector = "CVSS:4.0/AV:N/AC:L/AT:N/PR:N/UI:N/VC:H/VI:H/VA:H/SC:N/SI:N/SA:N/U:Amber"
        self.assertEqual(normalize_row(_row(Vector=vector)).original_vector, vector)

    def test_placeholder_vector_is_empty(self) -> None:
        self.assertEqual(normalize_row(_row(Vector="-")).original_vector, "")


class TestIdentifiers(unittest.TestCase):
    def test_extract_cve_and_ghsa(self) -> None:
        self.assertEqual(
            extract_cve("https://nvd.nist.gov/vuln/detail/CVE-2021-44228"), "CVE-2021-44228"
        )
        self.assertEqual(extract_ghsa("see GHSA-jfh8-c2jp-5v3q"), "GHSA-jfh8-c2jp-5v3q")
        self.assertIsNone(extract_cve("no id here"))

    def test_resolve_vulnerability_id(self) -> None:
        self.assertEqual(resolve_vulnerability_id("cve-2021-44228"), "CVE-2021-44228")
        self.assertEqual(resolve_vulnerability_id("GHSA-JFH8-C2JP-5V3Q"), "GHSA-jfh8-c2jp-5v3q")
        self.assertEqual(
            resolve_vulnerability_id("https://nvd.nist.gov/vuln/detail/CVE-2021-44228"),
            "CVE-2021-44228",
        )

    def test_missing_or_malformed_id_rejects_row(self) -> None:
        with self.assertRaises(NormalizationError) as ctx:
            normalize_row(_row(CVE=""))
        self.assertEqual(ctx.exception.field, "cve_id")
        with self.assertRaises(NormalizationError):
            normalize_row(_row(CVE="not-an-id"))

    def test_missing_product_rejects_row(self) -> None:
        with self.assertRaises(NormalizationError) as ctx:
            normalize_row(_row(Product="   "))
        self.assertEqual(ctx.exception.field, "product")


if __name__ == "__main__":
    unittest.main()
