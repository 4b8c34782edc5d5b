import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from campfire.common.identity import RequestContext, RequestContextBuilder, get_request_context

app = FastAPI()


@app.get("/context")
def _context_sample(context: RequestContext = Depends(get_request_context)) -> dict:
    return {
        "user_id": context.user_id,
        "display_name": context.display_name,
        "user_role": context.user_role,
        "request_id": context.request_id,
    }


client = TestClient(app)


def test_missing_user_id_errors_400() -> None:
    response = client.get("/context", headers={"X-Reviewer-Name": "Rae"})
    assert response.status_code == 400
    assert response.json()["detail"] == "X-User-Id header is required"


def test_headers_populate_context() -> None:
    response = client.get(
        "/context",
        headers={"X-User-Id": "u1", "X-Reviewer-Name": "Rae", "X-User-Role": " Client ", "X-Request-Id": "req-1"},
    )
    assert response.status_code == 200
    assert response.json() == {
        "user_id": "u1",
        "display_name": "Rae",
        "user_role": "client",
        "request_id": "req-1",
    }


def test_unknown_role_errors_400() -> None:
    response = client.get("/context", headers={"X-User-Id": "u1", "X-User-Role": "intern"})
    assert response.status_code == 400
    assert "user_role" in response.json()["detail"]


def test_display_name_falls_back() -> None:
    assert RequestContext(user_id="u1", user_email="r@example.com").display_name == "r@example.com"
    assert RequestContext(user_id="u1").display_name == "u1"


def test_builder_is_case_insensitive() -> None:
    ctx = RequestContextBuilder.from_headers({"x-user-id": "u1", "X-USER-EMAIL": "r@example.com"})
    assert ctx.user_id == "u1"
    assert ctx.user_email == "r@example.com"
    assert ctx.request_id


def test_blank_user_id_rejected() -> None:
    with pytest.raises(ValueError):
        RequestContext(user_id="")
