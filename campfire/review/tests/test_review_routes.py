from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from campfire.asset_store.repository import InMemoryAssetStore, StoreError
from campfire.review.completion import GroupCompletionAggregator, set_completion_aggregator
from campfire.review.models import AdGroup, AdUnit, ReviewLock
from campfire.review.service import ReviewService, set_review_service
from campfire.server import create_app

HEADERS = {"X-User-Id": "u1", "X-Reviewer-Name": "Rae", "X-User-Role": "client"}


@pytest.fixture
def store():
    store = InMemoryAssetStore()
    set_review_service(ReviewService(store=store))
    set_completion_aggregator(GroupCompletionAggregator(store=store, lock_ttl_seconds=600))
    yield store
    set_review_service(None)
    set_completion_aggregator(None)


@pytest.fixture
def client(store):
    return TestClient(create_app())


def _seed(store, group_status="ready"):
    store.put_ad_group(AdGroup(id="g1", brandCode="BR1", status=group_status))
    store.put_ad_unit(AdUnit(id="a", groupId="g1", filename="BR1_G1_RC1_9x16_V1.png"))
    store.put_ad_unit(AdUnit(id="b", groupId="g1", filename="BR1_G1_RC1_1x1_V1.png"))


def test_group_queue(store, client):
    _seed(store)
    resp = client.get("/review/groups/g1/queue", headers=HEADERS)
    assert resp.status_code == 200
    body = resp.json()
    assert body["group_status"] == "ready"
    assert [u["id"] for u in body["items"]] == ["a", "b"]


def test_missing_user_header_is_rejected(store, client):
    _seed(store)
    resp = client.get("/review/groups/g1/queue")
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "http.exception"


def test_unknown_group_is_404(store, client):
    resp = client.get("/review/groups/nope/queue", headers=HEADERS)
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "review.not_found"


def test_brand_queue(store, client):
    _seed(store)
    resp = client.get("/review/queue", params={"brand_codes": "BR1,BR2"}, headers=HEADERS)
    assert resp.status_code == 200
    assert len(resp.json()["items"]) == 2


def test_decisions_complete_group(store, client):
    _seed(store)
    resp = client.post("/review/groups/g1/units/a/decision", json={"action": "approve"}, headers=HEADERS)
    assert resp.status_code == 200
    body = resp.json()
    assert body["unit"]["status"] == "approved"
    assert body["group_completed"] is False

    resp = client.post("/review/groups/g1/units/b/decision", json={"action": "reject"}, headers=HEADERS)
    body = resp.json()
    assert body["group_completed"] is True
    assert body["group_status"] == "done"
    assert store.get_ad_group("g1").reviewLock is None


def test_edit_without_comment_is_400(store, client):
    _seed(store)
    resp = client.post(
        "/review/groups/g1/units/a/decision",
        json={"action": "edit", "comment": "   "},
        headers=HEADERS,
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "review.validation"
    assert [w for w in store.writes if w.op in ("update", "create")] == []


def test_edit_returns_revision(store, client):
    _seed(store)
    resp = client.post(
        "/review/groups/g1/units/a/decision",
        json={"action": "edit", "comment": "new copy"},
        headers=HEADERS,
    )
    assert resp.status_code == 200
    revision = resp.json()["revision"]
    assert revision["parentAdId"] == "a"
    assert revision["version"] == 2


def test_invalid_action_is_400(store, client):
    _seed(store)
    resp = client.post("/review/groups/g1/units/a/decision", json={"action": "shrug"}, headers=HEADERS)
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "validation.error"


def test_lock_conflict_is_409_with_gate(store, client):
    _seed(store)
    now = datetime.now(timezone.utc)
    store.update_ad_group(
        "g1",
        {"reviewLock": ReviewLock(holderId="u2", acquiredAt=now, expiresAt=now + timedelta(hours=1)).model_dump()},
    )
    resp = client.post("/review/groups/g1/units/a/decision", json={"action": "approve"}, headers=HEADERS)
    assert resp.status_code == 409
    error = resp.json()["error"]
    assert error["gate"] == "group_lock"
    assert error["code"] == "review.lock_unavailable"
    assert error["details"]["pending"]["unitId"] == "a"


def test_write_failure_is_503_with_pending(store, client):
    _seed(store)
    store.fail_writes("adGroups/g1/assets/a", StoreError("down"))
    resp = client.post(
        "/review/groups/g1/units/a/decision",
        json={"action": "edit", "comment": "keep this"},
        headers=HEADERS,
    )
    assert resp.status_code == 503
    assert resp.json()["error"]["details"]["pending"]["comment"] == "keep this"


def test_decision_on_done_group_is_409(store, client):
    _seed(store, group_status="done")
    resp = client.post("/review/groups/g1/units/a/decision", json={"action": "approve"}, headers=HEADERS)
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "review.group_closed"


def test_exit_on_done_group_writes_nothing(store, client):
    _seed(store, group_status="done")
    resp = client.post("/review/groups/g1/exit", headers=HEADERS)
    assert resp.status_code == 200
    assert resp.json()["group_status"] == "done"
    assert store.writes == []


def test_versions_endpoint(store, client):
    _seed(store)
    store.put_ad_unit(AdUnit(id="a2", groupId="g1", filename="BR1_G1_RC1_9x16_V2.png", parentAdId="a"))
    resp = client.get("/review/groups/g1/units/a2/versions", headers=HEADERS)
    assert resp.status_code == 200
    body = resp.json()
    assert body["root_id"] == "a"
    assert [v["id"] for v in body["versions"]] == ["a", "a2"]
    assert body["active_id"] == "a2"


def test_summary_endpoint(store, client):
    _seed(store)
    store.put_ad_unit(
        AdUnit(id="c", groupId="g1", filename="BR1_G1_RC2_9x16_V1.png", status="approved", isResolved=True)
    )
    resp = client.get("/review/groups/g1/summary", headers=HEADERS)
    assert resp.status_code == 200
    body = resp.json()
    assert body["units"]["approved"] == 1
    assert body["recipe_counts"]["unitCount"] == 2
    assert body["recipe_counts"]["statusCounts"]["approved"] == 1
    assert body["recipe_counts"]["statusCounts"]["pending"] == 1


def test_archive_restore_reopen(store, client):
    _seed(store)
    resp = client.post("/review/groups/g1/archive", headers=HEADERS)
    assert resp.status_code == 200
    assert resp.json()["status"] == "archived"
    assert resp.json()["archivedBy"] == "u1"

    resp = client.post("/review/groups/g1/archive", headers=HEADERS)
    assert resp.status_code == 409

    resp = client.post("/review/groups/g1/restore", headers=HEADERS)
    assert resp.json()["status"] == "pending"

    resp = client.post("/review/groups/g1/reopen", json={"status": "ready"}, headers=HEADERS)
    assert resp.status_code == 409

    store.update_ad_group("g1", {"status": "done"})
    resp = client.post("/review/groups/g1/reopen", json={"status": "ready"}, headers=HEADERS)
    assert resp.status_code == 200
    assert resp.json()["status"] == "ready"


def test_decision_on_archived_version_is_400(store, client):
    store.put_ad_group(AdGroup(id="g1", brandCode="BR1"))
    store.put_ad_unit(AdUnit(id="a1", groupId="g1", filename="BR1_G1_RC1_9x16_V1.png", status="archived"))
    store.put_ad_unit(AdUnit(id="a2", groupId="g1", filename="BR1_G1_RC1_9x16_V2.png", parentAdId="a1"))

    resp = client.post("/review/groups/g1/units/a1/decision", json={"action": "approve"}, headers=HEADERS)
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "review.validation"
    assert store.writes_to("assets/a1") == []
    assert store.get_ad_unit("g1", "a1").status == "archived"


class _UnreadableUnitsStore(InMemoryAssetStore):
    def list_ad_units(self, group_id, unresolved_only=False):
        raise StoreError("unavailable")


@pytest.fixture
def flaky_client():
    store = _UnreadableUnitsStore()
    store.put_ad_group(AdGroup(id="g1", brandCode="BR1"))
    set_review_service(ReviewService(store=store))
    set_completion_aggregator(GroupCompletionAggregator(store=store, lock_ttl_seconds=600))
    yield TestClient(create_app())
    set_review_service(None)
    set_completion_aggregator(None)


def test_queue_read_failure_is_503(flaky_client):
    resp = flaky_client.get("/review/groups/g1/queue", headers=HEADERS)
    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "review.write_failed"


def test_summary_read_failure_is_503(flaky_client):
    resp = flaky_client.get("/review/groups/g1/summary", headers=HEADERS)
    assert resp.status_code == 503


def test_failed_revision_write_keeps_group_open(store, client):
    store.put_ad_group(AdGroup(id="g1", brandCode="BR1"))
    store.put_ad_unit(AdUnit(id="a", groupId="g1", filename="BR1_G1_RC1_9x16_V1.png"))
    store.fail_writes("adGroups/g1/assets/", StoreError("down"))

    resp = client.post(
        "/review/groups/g1/units/a/decision",
        json={"action": "edit", "comment": "fix the logo"},
        headers=HEADERS,
    )
    assert resp.status_code == 503
    assert resp.json()["error"]["details"]["pending"]["comment"] == "fix the logo"
    group = store.get_ad_group("g1")
    assert group.status != "done"
    assert group.reviewLock is None
    assert store.get_ad_unit("g1", "a").isResolved is False
