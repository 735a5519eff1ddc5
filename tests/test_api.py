"""
End-to-end tests for the HTTP API.
"""
import pytest
from fastapi.testclient import TestClient

from app.api import app


@pytest.fixture
def client():
    return TestClient(app)


def upload(client, content, filename="expenses.csv"):
    return client.post("/uploads", files={"file": (filename, content.encode("utf-8"), "text/csv")})


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["remote_classifier"] is False
    assert response.json()["remote_factors"] is False


def test_upload_and_poll(client, sample_csv):
    response = upload(client, sample_csv)
    assert response.status_code == 202
    upload_id = response.json()["upload_id"]

    status = client.get(f"/uploads/{upload_id}").json()
    assert status["status"] == "completed"
    assert status["totalRows"] == 3
    assert status["processedRows"] == 3

    transactions = client.get("/transactions", params={"upload_id": upload_id}).json()
    assert len(transactions) == 3

    summary = client.get("/emissions/summary").json()
    assert summary["transaction_count"] == 3
    assert summary["total_emissions"] == pytest.approx(80.61 + 92.64 + 58.5)


def test_upload_rejects_wrong_type(client):
    response = upload(client, "hello", filename="expenses.xlsx")
    assert response.status_code == 400


def test_upload_rejects_empty_file(client):
    assert upload(client, "").status_code == 400


def test_failed_upload_reports_reason(client):
    upload_id = upload(client, "Merchant,Amount,Category\nShell,10,Fuel\n").json()["upload_id"]
    status = client.get(f"/uploads/{upload_id}").json()

    assert status["status"] == "failed"
    assert status["errorMessage"] == "CSV must contain a date column"


def test_unknown_upload(client):
    assert client.get("/uploads/does-not-exist").status_code == 404


def test_document_upload(client):
    content = b"ACME Office Supplies\nInvoice date: 15/03/2024\nTotal: 250.00\n"
    response = client.post("/uploads/document", files={"file": ("invoice.txt", content, "text/plain")})
    assert response.status_code == 202

    status = client.get(f"/uploads/{response.json()['upload_id']}").json()
    assert status["status"] == "completed"
    assert status["processedRows"] == 1


def test_correct_and_verify(client, sample_csv):
    upload(client, sample_csv)
    txn = next(t for t in client.get("/transactions").json() if t["description"] == "EDF Energy")

    response = client.patch(
        f"/transactions/{txn['id']}",
        json={"category": "Energy", "subcategory": "Natural Gas", "scope": 2},
    )
    assert response.status_code == 200
    assert response.json()["subcategory"] == "Natural Gas"
    assert response.json()["co2_emissions"] == pytest.approx(88.32)

    assert client.post(f"/transactions/{txn['id']}/verify").json()["verified"] is True
    assert client.patch("/transactions/999", json={"category": "Energy", "scope": 2}).status_code == 404


def test_analytics_endpoints(client, sample_csv):
    upload(client, sample_csv)

    assert client.get("/analytics/carbon-intensity", params={"revenue": 1000}).status_code == 200
    assert client.get("/analytics/carbon-intensity", params={"revenue": 0}).status_code == 422
    assert len(client.get("/analytics/trends", params={"periods": 6}).json()) == 6
    assert client.get("/analytics/carbon-budget", params={"annual_target": 5000}).status_code == 200
    benchmark = client.get("/analytics/benchmarking", params={"revenue": 1000, "sector": "Tech"}).json()
    assert benchmark["matched_sector"] == "technology"
    assert client.get("/analytics/scope-analysis").json()["scope1"]["categories"][0]["category"] == "Fuel and Energy"
    assert client.get("/analytics/reduction-opportunities").status_code == 200
    assert client.get("/analytics/carbon-costs").json()["carbon_price"] == 85.0


def test_export(client, sample_csv):
    upload(client, sample_csv)
    response = client.get("/transactions/export")
    assert response.status_code == 200
    assert response.content[:2] == b"PK"


def test_xbrl_report(client, sample_csv):
    upload(client, sample_csv)
    response = client.post("/reports/xbrl", json={
        "start_date": "2024-01-01",
        "end_date": "2024-12-31",
        "company_name": "Acme GmbH",
    })
    assert response.status_code == 200
    body = response.json()
    assert body["validation"]["is_valid"] is True
    assert body["summary"]["transaction_count"] == 3

    report = client.get(f"/reports/{body['report_id']}").json()
    assert report["status"] == "completed"
    download = client.get(f"/reports/{body['report_id']}/download")
    assert download.status_code == 200
    assert b"csrd:TotalGHGEmissions" in download.content


def test_pdf_report(client, sample_csv):
    upload(client, sample_csv)
    response = client.post("/reports", json={"start_date": "2024-01-01", "end_date": "2024-12-31"})
    assert response.status_code == 202

    report_id = response.json()["id"]
    assert client.get(f"/reports/{report_id}").json()["status"] == "completed"
    download = client.get(f"/reports/{report_id}/download")
    assert download.content.startswith(b"%PDF")
    assert [r["id"] for r in client.get("/reports").json()] == [report_id]


def test_report_rejects_inverted_period(client):
    response = client.post("/reports/xbrl", json={"start_date": "2024-12-31", "end_date": "2024-01-01"})
    assert response.status_code == 400


def test_emission_factors(client):
    assert client.get("/emission-factors").json() == []


def test_emission_factor_search_uses_stored_factors(client, sample_csv):
    upload(client, sample_csv)

    response = client.get("/emission-factors/search", params={"category": "energy"})
    assert response.status_code == 200
    factors = response.json()
    assert factors
    assert all("energy" in f["category"].lower() for f in factors)
    assert all(f["id"].startswith("local-") for f in factors)
