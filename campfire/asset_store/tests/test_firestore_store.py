from datetime import datetime, timedelta, timezone

import pytest
from google.api_core import exceptions as gexc

from campfire.asset_store.firestore_repository import FirestoreAssetStore
from campfire.asset_store.repository import StoreConflict, StoreNotFound, StorePermissionDenied
from campfire.recipe_review.models import RecipeDecisionEvent, RecipeHistoryEntry, RecipeStatusEntry
from campfire.review.models import AdUnit, ReviewLock

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class _FakeRef:
    def __init__(self, path):
        self.path = path


class _FakeSnapshot:
    def __init__(self, doc):
        self.id = doc.doc_id
        self.exists = doc.exists
        self.reference = _FakeRef(doc.path)
        self.update_time = doc.update_time
        self._data = dict(doc.data) if doc.data is not None else None

    def to_dict(self):
        return dict(self._data) if self._data is not None else None


class _FakeDoc:
    def __init__(self, client, path, doc_id):
        self._client = client
        self.path = path
        self.doc_id = doc_id
        self.data = None
        self.update_time = 0
        self._collections = {}

    @property
    def exists(self):
        return self.data is not None

    def collection(self, name):
        return self._client._collection(f"{self.path}/{name}")

    def get(self):
        if self._client.denied:
            raise gexc.PermissionDenied("missing or insufficient permissions")
        return _FakeSnapshot(self)

    def set(self, payload, merge=False):
        self.data = {**(self.data or {}), **payload} if merge else dict(payload)
        self.update_time += 1
        self._client.writes.append(("set", self.path, payload))

    def update(self, payload, option=None):
        if self._client.denied:
            raise gexc.PermissionDenied("missing or insufficient permissions")
        if self.data is None:
            raise gexc.NotFound(f"no document to update: {self.path}")
        if option is not None and option.last_update_time != self.update_time:
            raise gexc.FailedPrecondition("stale write")
        for key, value in payload.items():
            if hasattr(value, "values") and type(value).__name__ == "ArrayUnion":
                self.data[key] = list(self.data.get(key) or []) + list(value.values)
            else:
                self.data[key] = value
        self.update_time += 1
        self._client.writes.append(("update", self.path, payload))


class _FakeQuery:
    def __init__(self, docs, filters=()):
        self._docs = docs
        self._filters = list(filters)

    def where(self, field, op, value):
        return _FakeQuery(self._docs, [*self._filters, (field, op, value)])

    def _matches(self, data):
        for field, op, value in self._filters:
            if op == "==" and data.get(field) != value:
                return False
            if op == "in" and data.get(field) not in value:
                return False
        return True

    def stream(self):
        for doc in list(self._docs()):
            if doc.exists and self._matches(doc.data):
                yield _FakeSnapshot(doc)


class _FakeCollection(_FakeQuery):
    def __init__(self, client, path):
        self._client = client
        self.path = path
        self.docs = {}
        super().__init__(lambda: self.docs.values())

    def document(self, doc_id):
        if doc_id not in self.docs:
            self.docs[doc_id] = _FakeDoc(self._client, f"{self.path}/{doc_id}", doc_id)
        return self.docs[doc_id]

    def add(self, payload):
        doc = self.document(f"auto{len(self.docs)}")
        doc.set(payload)
        return None, doc


class _Option:
    def __init__(self, last_update_time):
        self.last_update_time = last_update_time


class _FakeFirestoreClient:
    def __init__(self):
        self._collections = {}
        self.writes = []
        self.denied = False

    def _collection(self, path):
        if path not in self._collections:
            self._collections[path] = _FakeCollection(self, path)
        return self._collections[path]

    def collection(self, name):
        return self._collection(name)

    def collection_group(self, name):
        def _docs():
            for path, col in self._collections.items():
                if path.split("/")[-1] == name:
                    yield from col.docs.values()

        return _FakeQuery(_docs)

    def write_option(self, last_update_time):
        return _Option(last_update_time)


@pytest.fixture
def client():
    return _FakeFirestoreClient()


@pytest.fixture
def store(client):
    return FirestoreAssetStore(client=client)


def _seed_group(client, group_id="g1", **data):
    client.collection("adGroups").document(group_id).set({"name": group_id, "status": "ready", **data})


def _seed_unit(client, group_id, unit_id, **data):
    client.collection("adGroups").document(group_id).collection("assets").document(unit_id).set(data)


def test_get_group_and_unit(client, store):
    _seed_group(client, brandCode="BR1")
    _seed_unit(client, "g1", "a", filename="BR1_G1_RC1_9x16_V2.png", status="ready")
    group = store.get_ad_group("g1")
    assert group.id == "g1"
    assert group.status == "ready"
    unit = store.get_ad_unit("g1", "a")
    assert unit.id == "a"
    assert unit.groupId == "g1"
    assert unit.version == 2
    assert unit.aspectRatio == "9x16"
    assert store.get_ad_unit("g1", "missing") is None
    assert store.get_ad_group("missing") is None


def test_list_units_filters_unresolved(client, store):
    _seed_group(client)
    _seed_unit(client, "g1", "a", filename="BR1_G1_RC1_9x16_V1.png", isResolved=True)
    _seed_unit(client, "g1", "b", filename="BR1_G1_RC1_1x1_V1.png", isResolved=False)
    assert sorted(u.id for u in store.list_ad_units("g1")) == ["a", "b"]
    assert [u.id for u in store.list_ad_units("g1", unresolved_only=True)] == ["b"]


def test_units_by_parent(client, store):
    _seed_group(client)
    _seed_unit(client, "g1", "root", filename="BR1_G1_RC1_9x16_V1.png")
    _seed_unit(client, "g1", "rev2", filename="BR1_G1_RC1_9x16_V2.png", parentAdId="root")
    assert [u.id for u in store.list_ad_units_by_parent("g1", "root")] == ["rev2"]


def test_brand_query_skips_recipe_assets(client, store):
    _seed_group(client)
    _seed_unit(client, "g1", "a", brandCode="BR1", status="ready", isResolved=False, filename="BR1_G1_RC1_9x16_V1.png")
    _seed_unit(client, "g1", "done", brandCode="BR1", status="ready", isResolved=True, filename="BR1_G1_RC1_1x1_V1.png")
    recipe_assets = client.collection("adGroups").document("g1").collection("recipes").document("001").collection("assets")
    recipe_assets.document("x").set({"brandCode": "BR1", "status": "ready", "isResolved": False})

    units = store.query_ad_units_by_brand_codes(["BR1"])
    assert [u.id for u in units] == ["a"]
    assert units[0].groupId == "g1"


def test_brand_query_rejects_oversized_batches(store):
    with pytest.raises(ValueError):
        store.query_ad_units_by_brand_codes([f"B{i}" for i in range(11)])
    with pytest.raises(ValueError):
        store.query_recipes_by_brand_codes([])


def test_create_and_update_unit(client, store):
    _seed_group(client)
    unit = AdUnit(id="new", groupId="g1", filename="BR1_G1_RC1_9x16_V1.png")
    store.create_ad_unit(unit)
    stored = client.collection("adGroups").document("g1").collection("assets").document("new").data
    assert "id" not in stored
    assert stored["groupId"] == "g1"

    store.update_ad_unit("g1", "new", {"status": "approved", "isResolved": True})
    assert store.get_ad_unit("g1", "new").status == "approved"
    store.add_ad_unit_history("g1", "new", {"status": "approved"})
    history = client.collection("adGroups").document("g1").collection("assets").document("new").collection("history")
    assert len(history.docs) == 1


def test_update_missing_unit_maps_to_not_found(client, store):
    _seed_group(client)
    with pytest.raises(StoreNotFound):
        store.update_ad_unit("g1", "ghost", {"status": "approved"})


def test_permission_denied_is_translated(client, store):
    _seed_group(client)
    client.denied = True
    with pytest.raises(StorePermissionDenied):
        store.update_ad_group("g1", {"status": "done"})


def test_lock_conditional_write(client, store):
    _seed_group(client)
    lock = ReviewLock(holderId="u1", acquiredAt=NOW, expiresAt=NOW + timedelta(minutes=30))
    group = store.acquire_group_lock("g1", lock, NOW)
    assert group.reviewLock.holderId == "u1"
    _, path, payload = client.writes[-1]
    assert path == "adGroups/g1"
    assert payload["reviewLock"]["holderId"] == "u1"

    other = ReviewLock(holderId="u2", acquiredAt=NOW, expiresAt=NOW + timedelta(minutes=30))
    with pytest.raises(StoreConflict):
        store.acquire_group_lock("g1", other, NOW)

    later = NOW + timedelta(hours=1)
    taken = store.acquire_group_lock("g1", other.model_copy(update={"expiresAt": later + timedelta(minutes=30)}), later)
    assert taken.reviewLock.holderId == "u2"


def test_lock_write_loses_race(client, store):
    _seed_group(client)
    doc = client.collection("adGroups").document("g1")
    original_get = doc.get

    def _racing_get():
        snap = original_get()
        doc.update({"status": "in review"})
        return snap

    doc.get = _racing_get
    lock = ReviewLock(holderId="u1", acquiredAt=NOW, expiresAt=NOW + timedelta(minutes=30))
    with pytest.raises(StoreConflict):
        store.acquire_group_lock("g1", lock, NOW)


def test_release_lock_only_for_holder(client, store):
    _seed_group(client)
    lock = ReviewLock(holderId="u1", acquiredAt=NOW, expiresAt=NOW + timedelta(minutes=30))
    store.acquire_group_lock("g1", lock, NOW)
    store.release_group_lock("g1", "u2")
    assert store.get_ad_group("g1").reviewLock is not None
    store.release_group_lock("g1", "u1")
    assert store.get_ad_group("g1").reviewLock is None


def test_recipes_and_history_array_union(client, store):
    _seed_group(client)
    recipes = client.collection("adGroups").document("g1").collection("recipes")
    recipes.document("001").set({"brandCode": "BR1", "status": "ready", "history": []})
    recipes.document("002").set({"brandCode": "BR1", "status": "approved"})
    recipes.document("001").collection("assets").document("x").set({"filename": "BR1_G1_001_1x1_V1.png"})

    assert [r.id for r in store.list_recipes("g1", status="ready")] == ["001"]
    assert [r.groupId for r in store.query_recipes_by_brand_codes(["BR1"], status="ready")] == ["g1"]
    assets = store.list_recipe_assets("g1", "001")
    assert assets[0].aspectRatio == "1x1"

    entry = RecipeHistoryEntry(userId="u1", userName="Rae", action="approved", timestamp=NOW)
    store.update_recipe("g1", "001", {"status": "approved"}, history_entry=entry)
    store.update_recipe("g1", "001", {"status": "edit_requested"}, history_entry=entry)
    recipe = store.get_recipe("g1", "001")
    assert recipe.status == "edit_requested"
    assert len(recipe.history) == 2


def test_recipe_status_and_responses(client, store):
    _seed_group(client)
    store.merge_recipe("g1", "009", {"status": "approved", "lastUpdatedBy": "u1"})
    store.add_recipe_status_history("g1", "009", RecipeStatusEntry(status="approved", userId="u1", timestamp=NOW))
    store.add_recipe_response("g1", RecipeDecisionEvent(recipeId="009", decision="approve", timestamp=NOW))

    assert store.get_recipe("g1", "009").status == "approved"
    responses = client.collection("adGroups").document("g1").collection("recipeResponses")
    assert len(responses.docs) == 1
    assert next(iter(responses.docs.values())).data["decision"] == "approve"
