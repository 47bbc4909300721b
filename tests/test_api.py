"""HTTP tests for the v1 API using FastAPI's TestClient and a temporary SQLite database."""

import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient

from _support import DatabaseTestCase, csv_text, good_row, make_settings
from app.core.database import get_db, get_session_factory
from app.main import app
from app.services.errors import StorageError

PREFIX = "/api/v1"


class ApiTestCase(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()

        def override_get_db():
            db = self.Session()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_session_factory] = lambda: self.Session
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        super().tearDown()

    def _import_csv(self, rows: int = 3) -> dict:
        path = self.write_text("scan.csv", csv_text([good_row(i) for i in range(1, rows + 1)]))
        response = self.client.post(f"{PREFIX}/datasets/import", json={"filepath": str(path)})
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()


class TestHealth(ApiTestCase):
    def test_health_reports_database_and_count(self) -> None:
        self._import_csv()
        response = self.client.get(f"{PREFIX}/health")
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["status"], "ok")
        self.assertEqual(body["database"], "connected")
        self.assertEqual(body["dataset_count"], 1)

    def test_root(self) -> None:
        self.assertEqual(self.client.get("/").json()["message"], "VulnMaster API")


class TestImportEndpoint(ApiTestCase):
    def test_import_by_path_then_list(self) -> None:
        summary = self._import_csv(rows=4)
        self.assertEqual(summary["record_count"], 4)
        self.assertEqual(summary["skipped_row_count"], 0)

        datasets = self.client.get(f"{PREFIX}/datasets").json()
        self.assertEqual([d["id"] for d in datasets], [summary["dataset_id"]])

        records = self.client.get(f"{PREFIX}/datasets/{summary['dataset_id']}/records").json()
        self.assertEqual([r["source_row"] for r in records], [1, 2, 3, 4])
        self.assertIsNone(records[0]["expert_severity"])

    def test_multipart_upload_keeps_file_name(self) -> None:
        content = csv_text([good_row(1), good_row(2)]).encode("utf-8")
        response = self.client.post(
            f"{PREFIX}/datasets/import",
            files={"file": ("nightly-scan.csv", content, "text/csv")},
        )
        self.assertEqual(response.status_code, 201, response.text)
        self.assertEqual(response.json()["file_name"], "nightly-scan.csv")
        self.assertEqual(response.json()["record_count"], 2)

    def test_multipart_upload_with_declared_format(self) -> None:
        content = csv_text([good_row(1)]).encode("utf-8")
        response = self.client.post(
            f"{PREFIX}/datasets/import",
            files={"file": ("export.txt", content, "text/plain")},
            data={"format": "csv"},
        )
        self.assertEqual(response.status_code, 201, response.text)

    def test_upload_too_large(self) -> None:
        content = csv_text([good_row(i) for i in range(1, 50)]).encode("utf-8")
        with patch("app.api.v1.datasets.get_settings", return_value=make_settings(MAX_UPLOAD_FILE_BYTES=100)):
            response = self.client.post(
                f"{PREFIX}/datasets/import",
                files={"file": ("scan.csv", content, "text/csv")},
            )
        self.assertEqual(response.status_code, 413)
        self.assertEqual(self.client.get(f"{PREFIX}/datasets").json(), [])

    def test_unsupported_format_is_415(self) -> None:
        path = self.write_text("scan.pdf", "%PDF-1.4")
        response = self.client.post(f"{PREFIX}/datasets/import", json={"filepath": str(path)})
        self.assertEqual(response.status_code, 415)
        self.assertEqual(response.json()["detail"]["kind"], "UnsupportedFormat")

    def test_unreadable_file_is_422(self) -> None:
        path = self.write_bytes("scan.xlsx", b"garbage")
        response = self.client.post(f"{PREFIX}/datasets/import", json={"filepath": str(path)})
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["detail"]["kind"], "UnreadableFile")

    def test_path_outside_import_dir_is_403(self) -> None:
        allowed = self.tmp_path / "incoming"
        allowed.mkdir()
        outside = self.write_text("scan.csv", csv_text([good_row(1)]))
        settings = make_settings(IMPORT_ALLOWED_DIR=str(allowed))
        with patch("app.api.v1.datasets.get_settings", return_value=settings):
            for filepath in (str(outside), "../scan.csv", "/etc/passwd"):
                with self.subTest(filepath=filepath):
                    response = self.client.post(
                        f"{PREFIX}/datasets/import", json={"filepath": filepath}
                    )
                    self.assertEqual(response.status_code, 403)
        self.assertEqual(self.client.get(f"{PREFIX}/datasets").json(), [])

    def test_path_inside_import_dir_is_imported(self) -> None:
        allowed = self.tmp_path / "incoming"
        allowed.mkdir()
        (allowed / "nightly.csv").write_text(csv_text([good_row(1), good_row(2)]), encoding="utf-8")
        settings = make_settings(IMPORT_ALLOWED_DIR=str(allowed))
        with patch("app.api.v1.datasets.get_settings", return_value=settings):
            for filepath in ("nightly.csv", str(allowed / "nightly.csv")):
                with self.subTest(filepath=filepath):
                    response = self.client.post(
                        f"{PREFIX}/datasets/import", json={"filepath": filepath}
                    )
                    self.assertEqual(response.status_code, 201, response.text)
                    self.assertEqual(response.json()["record_count"], 2)

    def test_path_import_refused_in_prod_without_import_dir(self) -> None:
        path = self.write_text("scan.csv", csv_text([good_row(1)]))
        with patch("app.api.v1.datasets.get_settings", return_value=make_settings(APP_ENV="prod")):
            response = self.client.post(f"{PREFIX}/datasets/import", json={"filepath": str(path)})
            self.assertEqual(response.status_code, 403)
            upload = self.client.post(
                f"{PREFIX}/datasets/import",
                files={"file": ("scan.csv", path.read_bytes(), "text/csv")},
            )
        self.assertEqual(upload.status_code, 201, upload.text)

    def test_missing_filepath_is_422(self) -> None:
        response = self.client.post(f"{PREFIX}/datasets/import", json={"format": "csv"})
        self.assertEqual(response.status_code, 422)

    def test_other_content_type_is_415(self) -> None:
        response = self.client.post(
            f"{PREFIX}/datasets/import", content=b"x", headers={"Content-Type": "text/plain"}
        )
        self.assertEqual(response.status_code, 415)


class TestDatasetEndpoints(ApiTestCase):
    def test_unknown_dataset_is_404(self) -> None:
        for path in ("", "/records", "/summary"):
            response = self.client.get(f"{PREFIX}/datasets/missing{path}")
            self.assertEqual(response.status_code, 404)
            self.assertEqual(response.json()["detail"]["kind"], "DatasetNotFound")

    def test_summary_and_delete(self) -> None:
        dataset_id = self._import_csv(rows=3)["dataset_id"]
        summary = self.client.get(f"{PREFIX}/datasets/{dataset_id}/summary").json()
        self.assertEqual(summary["original_severity_counts"]["HIGH"], 3)

        self.assertEqual(self.client.delete(f"{PREFIX}/datasets/{dataset_id}").status_code, 204)
        self.assertEqual(self.client.get(f"{PREFIX}/datasets").json(), [])
        self.assertEqual(self.client.delete(f"{PREFIX}/datasets/{dataset_id}").status_code, 404)


class TestRecordEndpoints(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        dataset_id = self._import_csv(rows=2)["dataset_id"]
        records = self.client.get(f"{PREFIX}/datasets/{dataset_id}/records").json()
        self.record_id = records[0]["id"]

    def test_put_expert_assessment(self) -> None:
        response = self.client.put(
            f"{PREFIX}/records/{self.record_id}/expert",
            json={"severity": "low", "score": 3.1, "justification": "Only reachable from the VPN."},
        )
        self.assertEqual(response.status_code, 200, response.text)
        body = response.json()
        self.assertEqual(body["expert_severity"], "LOW")
        self.assertEqual(body["expert_score"], 3.1)
        self.assertEqual(body["original_severity"], "HIGH")
        self.assertIsNotNone(body["updated_at"])

        fetched = self.client.get(f"{PREFIX}/records/{self.record_id}").json()
        self.assertEqual(fetched["expert_justification"], "Only reachable from the VPN.")

    def test_validation_errors_map_to_422(self) -> None:
        cases = [
            ({"severity": "LOW", "justification": "too short"}, "JustificationRequired"),
            ({"severity": "URGENT", "justification": "Long enough reason."}, "InvalidSeverity"),
            ({"score": 10.5, "justification": "Long enough reason."}, "ScoreOutOfRange"),
        ]
        for payload, kind in cases:
            with self.subTest(kind=kind):
                response = self.client.put(f"{PREFIX}/records/{self.record_id}/expert", json=payload)
                self.assertEqual(response.status_code, 422)
                self.assertEqual(response.json()["detail"]["kind"], kind)
        record = self.client.get(f"{PREFIX}/records/{self.record_id}").json()
        self.assertIsNone(record["updated_at"])

    def test_busy_database_is_503(self) -> None:
        busy = StorageError(f"Could not store the expert assessment for record {self.record_id!r}; try again.")
        with patch("app.api.v1.records.apply_expert_update", side_effect=busy):
            response = self.client.put(
                f"{PREFIX}/records/{self.record_id}/expert",
                json={"severity": "LOW", "justification": "Long enough reason."},
            )
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["detail"]["kind"], "StorageError")

    def test_unknown_record_is_404(self) -> None:
        response = self.client.put(
            f"{PREFIX}/records/missing/expert",
            json={"severity": "LOW", "justification": "Long enough reason."},
        )
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["detail"]["kind"], "RecordNotFound")
        self.assertEqual(self.client.get(f"{PREFIX}/records/missing").status_code, 404)


if __name__ == "__main__":
    unittest.main()
