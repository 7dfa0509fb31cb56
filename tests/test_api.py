"""
End-to-end tests of the FastAPI app with the procurement API mocked by respx.
"""

import json
import httpx
import pytest
import respx
from fastapi.testclient import TestClient
from procure_desk.api.deps import get_sleep
from procure_desk.api.main import app
from procure_desk.core.config import settings

API = settings.procurement_api_url
AUTH = {"Authorization": "Bearer access-1", "X-Refresh-Token": "refresh-1"}

APPROVER = {"id": 2, "role": "approver_level_1", "username": "ana"}
STAFF = {"id": 1, "role": "staff", "username": "sam"}


def request_body(**overrides):
    body = {"id": 42, "title": "Laptops", "amount": "500.00", "status": "pending", "approvals": []}
    body.update(overrides)
    return body


async def no_sleep(delay):
    return None


@pytest.fixture
def client():
    app.dependency_overrides[get_sleep] = lambda: no_sleep
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_missing_bearer_token(client):
    r = client.get("/approvals/pending")
    assert r.status_code == 401
    assert r.json()["detail"] == "Missing bearer token"


class TestPendingApprovals:
    @respx.mock
    def test_lists_with_eligibility(self, client):
        respx.get(f"{API}/api/auth/profile/").mock(return_value=httpx.Response(200, json=APPROVER))
        respx.get(f"{API}/api/pending-approvals/").mock(return_value=httpx.Response(200, json={"results": [
            request_body(id=1),
            request_body(id=2, amount="5000", approvals=[{"approval_level": 1, "approved": True}]),
            request_body(id=3, can_approve=True, amount="9000"),
        ]}))

        r = client.get("/approvals/pending", headers=AUTH)

        assert r.status_code == 200
        data = r.json()
        assert data["total"] == 3
        assert data["actionable"] == 2
        first, second, third = data["requests"]
        assert first["eligible"] is True
        assert first["approval_level_label"] == "Level 1"
        assert second["eligible"] is False
        assert second["next_level"] == 2
        assert third["decision_source"] == "server"

    @respx.mock
    def test_expired_session(self, client):
        respx.get(f"{API}/api/auth/profile/").mock(return_value=httpx.Response(401))
        respx.post(f"{API}/api/auth/token/refresh/").mock(return_value=httpx.Response(401))

        r = client.get("/approvals/pending", headers=AUTH)

        assert r.status_code == 401
        assert r.json()["suggestion"] == "Please sign in again."


class TestEligibility:
    @respx.mock
    def test_eligibility_decision(self, client):
        respx.get(f"{API}/api/auth/profile/").mock(return_value=httpx.Response(200, json=APPROVER))
        respx.get(f"{API}/api/requests/42/").mock(return_value=httpx.Response(200, json=request_body(status="approved")))

        r = client.get("/approvals/42/eligibility", headers=AUTH)

        assert r.status_code == 200
        assert r.json()["eligible"] is False
        assert r.json()["checks"]["request_pending"] is False

    @respx.mock
    def test_unknown_request(self, client):
        respx.get(f"{API}/api/auth/profile/").mock(return_value=httpx.Response(200, json=APPROVER))
        respx.get(f"{API}/api/requests/404/").mock(return_value=httpx.Response(404, json={"detail": "Not found."}))

        r = client.get("/approvals/404/eligibility", headers=AUTH)

        assert r.status_code == 404
        assert r.json()["detail"] == "Not found."


class TestDecide:
    @respx.mock
    def test_approve_refetches_request(self, client):
        respx.get(f"{API}/api/auth/profile/").mock(return_value=httpx.Response(200, json=APPROVER))
        fetch = respx.get(f"{API}/api/requests/42/").mock(side_effect=[
            httpx.Response(200, json=request_body()),
            httpx.Response(200, json=request_body(status="approved")),
        ])
        approve = respx.post(f"{API}/api/requests/42/approve/").mock(
            return_value=httpx.Response(200, json={"message": "Request approved"})
        )

        r = client.post("/approvals/42", json={"decision": "approve"}, headers=AUTH)

        assert r.status_code == 200
        data = r.json()
        assert data["decision"] == "approve"
        assert data["request"]["status"] == "approved"
        assert fetch.call_count == 2
        assert json.loads(approve.calls.last.request.content) == {"approved": True, "comments": None}

    def test_reject_without_comments(self, client):
        with respx.mock(base_url=API, assert_all_called=False) as router:
            router.get("/api/auth/profile/").mock(return_value=httpx.Response(200, json=APPROVER))
            router.get("/api/requests/42/").mock(return_value=httpx.Response(200, json=request_body()))
            approve = router.post("/api/requests/42/approve/")
            r = client.post("/approvals/42", json={"decision": "reject", "comments": "  "}, headers=AUTH)

        assert r.status_code == 422
        assert r.json()["detail"] == "Comments are required when rejecting a request."
        assert approve.call_count == 0

    @respx.mock
    def test_recorded_decision_survives_failed_refetch(self, client):
        respx.get(f"{API}/api/auth/profile/").mock(return_value=httpx.Response(200, json=APPROVER))
        respx.get(f"{API}/api/requests/42/").mock(side_effect=[
            httpx.Response(200, json=request_body()),
            httpx.Response(503, json={"detail": "busy"}),
        ])
        approve = respx.post(f"{API}/api/requests/42/approve/").mock(
            return_value=httpx.Response(200, json={"message": "Request approved"})
        )

        r = client.post("/approvals/42", json={"decision": "approve"}, headers=AUTH)

        assert r.status_code == 200
        assert r.json()["decision"] == "approve"
        assert r.json()["request"] is None
        assert approve.call_count == 1

    @respx.mock
    def test_not_eligible(self, client):
        respx.get(f"{API}/api/auth/profile/").mock(return_value=httpx.Response(200, json=STAFF))
        respx.get(f"{API}/api/requests/42/").mock(return_value=httpx.Response(200, json=request_body()))

        r = client.post("/approvals/42", json={"decision": "approve"}, headers=AUTH)

        assert r.status_code == 403
        assert "no approval authority" in r.json()["suggestion"]

    @respx.mock
    def test_upstream_error_message(self, client):
        respx.get(f"{API}/api/auth/profile/").mock(return_value=httpx.Response(200, json=APPROVER))
        respx.get(f"{API}/api/requests/42/").mock(return_value=httpx.Response(200, json=request_body()))
        respx.post(f"{API}/api/requests/42/approve/").mock(
            return_value=httpx.Response(400, json={"error": "This request was already processed"})
        )

        r = client.post("/approvals/42", json={"decision": "reject", "comments": "Too late"}, headers=AUTH)

        assert r.status_code == 400
        assert r.json()["detail"] == "This request was already processed"

    def test_invalid_decision(self, client):
        with respx.mock(base_url=API, assert_all_called=False) as router:
            router.get("/api/auth/profile/").mock(return_value=httpx.Response(200, json=APPROVER))
            r = client.post("/approvals/42", json={"decision": "maybe"}, headers=AUTH)
        assert r.status_code == 422


class TestExtract:
    def mock_processing(self, status_responses):
        respx.post(f"{API}/api/documents/upload-proforma/42/").mock(
            return_value=httpx.Response(200, json={"success": True, "file_path": "proformas/42/quote.pdf"})
        )
        respx.post(f"{API}/api/documents/comet-process/42/").mock(
            return_value=httpx.Response(200, json={"success": True, "job_id": "job-9"})
        )
        return respx.get(f"{API}/api/documents/comet-status/42/job-9/").mock(side_effect=status_responses)

    @respx.mock
    def test_extract_and_merge(self, client):
        status = self.mock_processing([
            httpx.Response(200, json={"status": "processing"}),
            httpx.Response(200, json={"status": "completed", "result": {
                "vendor_name": "Contoso Ltd",
                "vendor_email": "billing@contoso.example",
                "items": [{"description": "Laptop", "quantity": 2, "unit_price": "1200"}],
                "total": "2400",
            }}),
        ])
        form = {"title": "Laptops", "vendor_name": "Typed", "items": [{"description": "", "quantity": "1"}]}

        r = client.post(
            "/documents/42/extract",
            files={"file": ("quote.pdf", b"%PDF-1.7", "application/pdf")},
            data={"document_type": "proforma", "form": json.dumps(form)},
            headers=AUTH,
        )

        assert r.status_code == 200
        data = r.json()
        assert data["job_id"] == "job-9"
        assert data["attempts"] == 2
        assert data["result"]["vendor"]["name"] == "Contoso Ltd"
        assert data["form"]["vendor_name"] == "Contoso Ltd"
        assert data["form"]["title"] == "Laptops"
        assert data["form"]["items"][0]["description"] == "Laptop"
        assert float(data["total_amount"]) == 2400.0
        assert status.call_count == 2

    @respx.mock
    def test_extract_without_form(self, client):
        self.mock_processing([httpx.Response(200, json={"status": "completed", "result": {"vendor": {"name": "Fabrikam"}}})])

        r = client.post(
            "/documents/42/extract",
            files={"file": ("quote.png", b"\x89PNG", "image/png")},
            headers=AUTH,
        )

        assert r.status_code == 200
        assert r.json()["form"] is None
        assert r.json()["file_info"]["type"] == "image/png"

    @respx.mock
    def test_job_failure(self, client):
        self.mock_processing([httpx.Response(200, json={"status": "failed", "error": "Could not read document"})])

        r = client.post(
            "/documents/42/extract",
            files={"file": ("quote.pdf", b"%PDF-1.7 failing", "application/pdf")},
            headers=AUTH,
        )

        assert r.status_code == 502
        assert r.json()["detail"] == "Could not read document"

    def test_unsupported_file_type(self, client):
        r = client.post(
            "/documents/42/extract",
            files={"file": ("notes.txt", b"hello", "text/plain")},
            headers=AUTH,
        )
        assert r.status_code == 415
        assert r.json()["detail"] == "Please upload a PDF or image file (JPG, PNG)"

    def test_invalid_form_state(self, client):
        r = client.post(
            "/documents/42/extract",
            files={"file": ("quote.pdf", b"%PDF", "application/pdf")},
            data={"form": "{not json"},
            headers=AUTH,
        )
        assert r.status_code == 422
