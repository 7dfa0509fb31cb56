import httpx
import pytest
import respx
from procure_desk.cli import build_parser, main

API = "http://api.test"
APPROVER = {"id": 2, "role": "approver_level_1", "username": "ana"}


@pytest.fixture(autouse=True)
def tokens(monkeypatch):
    monkeypatch.setenv("PROCURE_ACCESS_TOKEN", "access-1")
    monkeypatch.setenv("PROCURE_REFRESH_TOKEN", "refresh-1")


def request_body(**overrides):
    body = {"id": 42, "title": "Laptops", "amount": "500.00", "status": "pending", "approvals": []}
    body.update(overrides)
    return body


def test_reject_requires_comments_flag():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["reject", "42"])


def test_pending(capsys):
    with respx.mock(base_url=API) as router:
        router.get("/api/auth/profile/").mock(return_value=httpx.Response(200, json=APPROVER))
        router.get("/api/pending-approvals/").mock(return_value=httpx.Response(200, json=[
            request_body(id=1),
            request_body(id=2, amount="5000", approvals=[{"approval_level": 1, "approved": True}]),
        ]))
        code = main(["--api-url", API, "pending", "-v"])

    out = capsys.readouterr().out
    assert code == 0
    assert "1 actionable of 2" in out
    assert "Level 1 & 2" in out
    assert "Awaiting level 2 approval" in out


def test_approve(capsys):
    with respx.mock(base_url=API) as router:
        router.get("/api/auth/profile/").mock(return_value=httpx.Response(200, json=APPROVER))
        router.get("/api/requests/42/").mock(side_effect=[
            httpx.Response(200, json=request_body()),
            httpx.Response(200, json=request_body(status="approved")),
        ])
        route = router.post("/api/requests/42/approve/").mock(return_value=httpx.Response(200, json={}))
        code = main(["--api-url", API, "approve", "42", "--comments", "Fine"])

    assert code == 0
    assert route.call_count == 1
    assert "Approved request #42 (status: approved)" in capsys.readouterr().out


def test_approve_reported_when_reload_fails(capsys):
    with respx.mock(base_url=API) as router:
        router.get("/api/auth/profile/").mock(return_value=httpx.Response(200, json=APPROVER))
        router.get("/api/requests/42/").mock(side_effect=[
            httpx.Response(200, json=request_body()),
            httpx.Response(503, json={"detail": "busy"}),
        ])
        route = router.post("/api/requests/42/approve/").mock(return_value=httpx.Response(200, json={}))
        code = main(["--api-url", API, "approve", "42"])

    out = capsys.readouterr().out
    assert code == 0
    assert route.call_count == 1
    assert "Approved request #42 (could not reload it" in out


def test_reject_blank_comments_makes_no_call(capsys):
    with respx.mock(base_url=API, assert_all_called=False) as router:
        router.get("/api/auth/profile/").mock(return_value=httpx.Response(200, json=APPROVER))
        router.get("/api/requests/42/").mock(return_value=httpx.Response(200, json=request_body()))
        route = router.post("/api/requests/42/approve/")
        code = main(["--api-url", API, "reject", "42", "--comments", "  "])

    assert code == 1
    assert route.call_count == 0
    assert "Comments are required" in capsys.readouterr().out


def test_upstream_error_is_printed(capsys):
    with respx.mock(base_url=API) as router:
        router.get("/api/auth/profile/").mock(return_value=httpx.Response(200, json=APPROVER))
        router.get("/api/requests/42/").mock(return_value=httpx.Response(200, json=request_body()))
        router.post("/api/requests/42/approve/").mock(
            return_value=httpx.Response(400, json={"detail": "Level 1 approval required first"})
        )
        code = main(["--api-url", API, "approve", "42"])

    assert code == 1
    assert "Level 1 approval required first" in capsys.readouterr().out


def test_extract(tmp_path, capsys):
    pdf = tmp_path / "quote.pdf"
    pdf.write_bytes(b"%PDF-1.7 cli")

    with respx.mock(base_url=API) as router:
        router.post("/api/documents/upload-proforma/42/").mock(
            return_value=httpx.Response(200, json={"success": True, "file_path": "proformas/42/quote.pdf"})
        )
        router.post("/api/documents/comet-process/42/").mock(
            return_value=httpx.Response(200, json={"success": True, "job_id": "job-1"})
        )
        router.get("/api/documents/comet-status/42/job-1/").mock(return_value=httpx.Response(200, json={
            "status": "completed",
            "result": {"vendor": {"name": "Contoso Ltd"}, "totals": {"total": "99.00", "currency": "AUD"}},
        }))
        code = main(["--api-url", API, "extract", "42", str(pdf)])

    out = capsys.readouterr().out
    assert code == 0
    assert "Vendor: Contoso Ltd" in out
    assert "AUD 99.00" in out


def test_extract_missing_file(tmp_path, capsys):
    code = main(["--api-url", API, "extract", "42", str(tmp_path / "missing.pdf")])
    assert code == 1
    assert "File not found" in capsys.readouterr().out


def test_expired_session(capsys, monkeypatch):
    monkeypatch.delenv("PROCURE_REFRESH_TOKEN")
    with respx.mock(base_url=API) as router:
        router.get("/api/auth/profile/").mock(return_value=httpx.Response(401))
        code = main(["--api-url", API, "pending"])

    out = capsys.readouterr().out
    assert code == 1
    assert "Please sign in again." in out
