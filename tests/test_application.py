import base64

import pytest
from fastapi.testclient import TestClient

import application
from deedscraper.adapters.base import StageOutcome
from deedscraper.errors import ErrorKind
from deedscraper.main import DeedRetrievalGraph
from tests.fakes import PDF_BYTES, ScriptedAdapter, SessionRecorder

client = TestClient(application.app)


@pytest.fixture
def scripted(monkeypatch):
    """Route every county to a graph driven by a scripted adapter and fake browser sessions."""
    adapter = ScriptedAdapter()
    graph = DeedRetrievalGraph(adapter, session_factory=SessionRecorder())
    monkeypatch.setattr(application, "get_graph", lambda county, state: graph)
    monkeypatch.setattr(application, "jobs", {})
    return adapter


def test_health() -> None:
    response = client.get("/api/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["counties"] == 2
    assert client.get("/health").status_code == 200


def test_counties() -> None:
    counties = client.get("/api/counties").json()["counties"]
    assert {c["name"] for c in counties} == {"durham-county-north-carolina", "duval-county-florida"}


def test_download_returns_document_and_steps(scripted) -> None:
    response = client.post(
        "/api/deed/download",
        json={"address": "1418 Alabama Ave", "county": "Durham", "state": "NC"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert base64.b64decode(body["document"]["bytes"]) == PDF_BYTES
    assert [s["stageName"] for s in body["steps"]][-1] == "capture_document"


def test_download_passes_known_identifiers(scripted) -> None:
    response = client.post(
        "/api/deed/download",
        json={
            "address": "1418 Alabama Ave",
            "county": "Durham",
            "state": "NC",
            "knownIdentifiers": {"bookNumber": "9512", "pageNumber": "204"},
        },
    )

    steps = response.json()["steps"]
    assert steps[1]["skipped"] is True
    assert "locate_source_record" not in scripted.calls


def test_download_failure_is_reported_in_body(scripted) -> None:
    scripted.script["locate_target_record"] = StageOutcome.fail(ErrorKind.NOT_FOUND, "no such document")

    body = client.post(
        "/api/deed/download",
        json={"address": "1418 Alabama Ave", "county": "Durham", "state": "NC"},
    ).json()

    assert body["success"] is False
    assert body["document"] is None
    assert body["error"]["step"] == "locate_target_record"


def test_unknown_county_is_bad_request() -> None:
    response = client.post(
        "/api/deed/download",
        json={"address": "1 Main St", "county": "Nowhere", "state": "ZZ"},
    )
    assert response.status_code == 400


def test_blank_address_is_rejected() -> None:
    response = client.post("/api/deed/download", json={"address": "  ", "county": "Durham", "state": "NC"})
    assert response.status_code == 422


def test_job_lifecycle(scripted) -> None:
    response = client.post(
        "/api/jobs",
        json={"addresses": ["1418 Alabama Ave", "900 W Main St"], "county": "Durham", "state": "NC"},
    )

    assert response.status_code == 202
    job_id = response.json()["job_id"]

    # TestClient runs background tasks before returning the response
    job = client.get(f"/api/jobs/{job_id}").json()
    assert job["status"] == "completed"
    assert job["completed_addresses"] == 2
    assert all(r["success"] and r["completed"] for r in job["results"])


def test_job_with_too_many_addresses_is_rejected(scripted) -> None:
    addresses = [f"{n} Main St" for n in range(application.MAX_ADDRESSES + 1)]
    response = client.post("/api/jobs", json={"addresses": addresses, "county": "Durham", "state": "NC"})
    assert response.status_code == 422


def test_unknown_job_is_404() -> None:
    assert client.get("/api/jobs/does-not-exist").status_code == 404


def test_job_results_keep_document_metadata_without_bytes(scripted) -> None:
    job_id = client.post(
        "/api/jobs",
        json={"addresses": ["1418 Alabama Ave"], "county": "Durham", "state": "NC"},
    ).json()["job_id"]

    document = client.get(f"/api/jobs/{job_id}").json()["results"][0]["document"]

    assert "bytes" not in document
    assert document["byteLength"] == len(PDF_BYTES)
    assert application.jobs[job_id].results[0].document == document
