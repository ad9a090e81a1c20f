from datetime import datetime

from todo_api.db import SQLiteRepository
from todo_api.main import app
from todo_api.repositories import get_repository

ALICE = ("alice", "alice-pw")
BOB = ("bob", "bob-pw")

BASE = "/api/v1/todos/"


def create_todo_payload(
    title="Test Task",
    description="Do something",
    priority=None,
    due_date=None,
):
    payload = {
        "title": title,
        "description": description,
    }
    if priority is not None:
        payload["priority"] = priority
    if due_date is not None:
        payload["due_date"] = due_date
    return payload


def create(client, auth=ALICE, **kwargs):
    res = client.post(BASE, json=create_todo_payload(**kwargs), auth=auth)
    assert res.status_code == 201, res.text
    return res.json()


def assert_todo_shape(todo: dict):
    for key in ["id", "title", "completed", "priority", "created_at", "updated_at"]:
        assert key in todo
    assert "description" in todo
    assert "due_date" in todo
    assert "owner_id" not in todo
    assert isinstance(todo["id"], int)
    assert isinstance(todo["title"], str)
    assert isinstance(todo["completed"], bool)
    assert todo["priority"] in ("low", "medium", "high")
    datetime.fromisoformat(todo["created_at"])
    datetime.fromisoformat(todo["updated_at"])
    if todo["due_date"] is not None:
        datetime.fromisoformat(todo["due_date"])


class TestHealth:
    def test_health_check_needs_no_auth(self, client):
        res = client.get("/")
        assert res.status_code == 200
        data = res.json()
        assert data["message"] == "Healthy"
        assert data["backend"] in ("memory", "sqlite")

    def test_request_id_is_echoed(self, client):
        res = client.get("/", headers={"X-Request-ID": "abc-123"})
        assert res.headers["X-Request-ID"] == "abc-123"


class TestTodosCRUD:
    def test_create_todo_minimal(self, client):
        todo = create(client, title="Buy milk", description=None)
        assert_todo_shape(todo)
        assert todo["title"] == "Buy milk"
        assert todo["description"] is None
        assert todo["completed"] is False
        assert todo["priority"] == "medium"
        assert todo["created_at"] == todo["updated_at"]

    def test_create_ignores_completed_flag(self, client):
        res = client.post(BASE, json={"title": "Sneaky", "completed": True}, auth=ALICE)
        assert res.status_code == 201
        assert res.json()["completed"] is False

    def test_create_strips_title_and_description(self, client):
        todo = create(client, title="  Walk dog  ", description="   ")
        assert todo["title"] == "Walk dog"
        assert todo["description"] is None

    def test_create_todo_with_due_date_date_string(self, client):
        todo = create(client, title="Pay bills", description="Electricity", due_date="2099-12-25", priority="high")
        assert_todo_shape(todo)
        assert todo["due_date"].startswith("2099-12-25T00:00:00")
        assert todo["priority"] == "high"

    def test_get_todo_and_not_found(self, client):
        tid = create(client, title="Read book")["id"]

        res_get = client.get(f"{BASE}{tid}", auth=ALICE)
        assert res_get.status_code == 200
        fetched = res_get.json()
        assert fetched["id"] == tid
        assert fetched["title"] == "Read book"

        res_404 = client.get(f"{BASE}999999", auth=ALICE)
        assert res_404.status_code == 404
        body = res_404.json()
        assert body["error"] == "NotFound"
        assert body["message"] == "Todo not found"

    def test_put_replace_todo(self, client):
        tid = create(client, title="Initial", description="A")["id"]

        new_payload = {"title": "Replaced", "description": None, "completed": True, "due_date": "2100-01-01"}
        res_put = client.put(f"{BASE}{tid}", json=new_payload, auth=ALICE)
        assert res_put.status_code == 200
        updated = res_put.json()
        assert updated["id"] == tid
        assert updated["title"] == "Replaced"
        assert updated["description"] is None
        assert updated["completed"] is True
        assert updated["priority"] == "medium"
        assert updated["due_date"].startswith("2100-01-01")

        res_put_nf = client.put(f"{BASE}424242", json=new_payload, auth=ALICE)
        assert res_put_nf.status_code == 404

    def test_patch_partial_update(self, client):
        tid = create(client, title="Partial", description="X", due_date="2099-01-01")["id"]

        res_patch = client.patch(f"{BASE}{tid}", json={"title": "Partial Updated", "completed": True}, auth=ALICE)
        assert res_patch.status_code == 200
        patched = res_patch.json()
        assert patched["title"] == "Partial Updated"
        assert patched["completed"] is True
        assert patched["description"] == "X"
        assert patched["due_date"].startswith("2099-01-01")

        res_clear = client.patch(f"{BASE}{tid}", json={"due_date": None}, auth=ALICE)
        assert res_clear.status_code == 200
        assert res_clear.json()["due_date"] is None
        assert res_clear.json()["title"] == "Partial Updated"

        res_patch_nf = client.patch(f"{BASE}123456", json={"title": "Nope"}, auth=ALICE)
        assert res_patch_nf.status_code == 404

    def test_toggle_twice_restores_state(self, client):
        tid = create(client, title="Flip")["id"]

        first = client.post(f"{BASE}{tid}/toggle", auth=ALICE)
        assert first.status_code == 200
        assert first.json()["completed"] is True

        second = client.post(f"{BASE}{tid}/toggle", auth=ALICE)
        assert second.status_code == 200
        assert second.json()["completed"] is False

        assert client.post(f"{BASE}999/toggle", auth=ALICE).status_code == 404

    def test_delete_todo(self, client):
        tid = create(client, title="ToDelete")["id"]

        res_del = client.delete(f"{BASE}{tid}", auth=ALICE)
        assert res_del.status_code == 204
        assert res_del.text == ""

        assert client.get(f"{BASE}{tid}", auth=ALICE).status_code == 404
        res_del_again = client.delete(f"{BASE}{tid}", auth=ALICE)
        assert res_del_again.status_code == 404
        assert res_del_again.json()["message"] == "Todo not found"

    def test_ids_are_not_reused(self, client):
        first = create(client, title="One")["id"]
        client.delete(f"{BASE}{first}", auth=ALICE)
        second = create(client, title="Two")["id"]
        assert second != first

    def test_huge_id_is_not_found_on_sqlite(self, client, tmp_path):
        app.dependency_overrides[get_repository] = lambda: SQLiteRepository(str(tmp_path / "todos.db"))
        huge = 10 ** 20
        for res in [
            client.get(f"{BASE}{huge}", auth=ALICE),
            client.patch(f"{BASE}{huge}", json={"title": "x"}, auth=ALICE),
            client.post(f"{BASE}{huge}/toggle", auth=ALICE),
            client.delete(f"{BASE}{huge}", auth=ALICE),
        ]:
            assert res.status_code == 404
            assert res.json()["error"] == "NotFound"


class TestOwnership:
    def test_list_returns_only_own_todos(self, client):
        create(client, auth=ALICE, title="Alice 1")
        create(client, auth=ALICE, title="Alice 2")
        create(client, auth=BOB, title="Bob 1")

        alice_items = client.get(BASE, auth=ALICE).json()
        assert alice_items["total"] == 2
        assert [t["title"] for t in alice_items["items"]] == ["Alice 1", "Alice 2"]

        bob_items = client.get(BASE, auth=BOB).json()
        assert [t["title"] for t in bob_items["items"]] == ["Bob 1"]

    def test_other_users_todo_is_forbidden(self, client):
        tid = create(client, auth=ALICE, title="Private")["id"]

        calls = [
            client.get(f"{BASE}{tid}", auth=BOB),
            client.patch(f"{BASE}{tid}", json={"title": "Mine now"}, auth=BOB),
            client.put(f"{BASE}{tid}", json={"title": "Mine now"}, auth=BOB),
            client.post(f"{BASE}{tid}/toggle", auth=BOB),
            client.delete(f"{BASE}{tid}", auth=BOB),
        ]
        for res in calls:
            assert res.status_code == 403
            body = res.json()
            assert body["error"] == "Forbidden"
            assert "alice" not in body["message"]

        # Untouched
        todo = client.get(f"{BASE}{tid}", auth=ALICE).json()
        assert todo["title"] == "Private"
        assert todo["completed"] is False

    def test_unauthenticated_requests_are_rejected(self, client):
        tid = create(client, title="Hidden")["id"]
        for res in [
            client.get(BASE),
            client.post(BASE, json={"title": "x"}),
            client.get(f"{BASE}{tid}"),
            client.post(f"{BASE}{tid}/toggle"),
            client.delete(f"{BASE}{tid}"),
            client.get(f"{BASE}stats"),
        ]:
            assert res.status_code == 401
            assert res.headers["WWW-Authenticate"] == "Basic"
            assert res.json()["error"] == "NotAuthenticated"


class TestListPaginationFilteringSorting:
    def seed_todos(self, client, count=10):
        created_ids = []
        for i in range(count):
            todo = create(client, title=f"Task {i}", description=f"Desc {i}")
            if i % 2 == 0:
                client.post(f"{BASE}{todo['id']}/toggle", auth=ALICE)
            created_ids.append(todo["id"])
        return created_ids

    def test_list_defaults_to_all_items_oldest_first(self, client):
        ids = self.seed_todos(client, 7)
        res = client.get(BASE, auth=ALICE)
        assert res.status_code == 200
        data = res.json()
        assert data["total"] == 7
        assert data["limit"] is None
        assert [t["id"] for t in data["items"]] == ids

    def test_list_basic_pagination(self, client):
        ids = self.seed_todos(client, 7)
        page1 = client.get(f"{BASE}?limit=3&offset=0", auth=ALICE).json()
        assert page1["limit"] == 3
        assert page1["offset"] == 0
        assert page1["total"] == 7
        assert [t["id"] for t in page1["items"]] == ids[:3]

        page3 = client.get(f"{BASE}?limit=3&offset=6", auth=ALICE).json()
        assert [t["id"] for t in page3["items"]] == ids[6:]

    def test_list_filter_completed_true_false(self, client):
        self.seed_todos(client, 6)

        data_true = client.get(f"{BASE}?completed=true", auth=ALICE).json()
        assert data_true["total"] == 3
        assert all(item["completed"] is True for item in data_true["items"])

        data_false = client.get(f"{BASE}?completed=false", auth=ALICE).json()
        assert data_false["total"] == 3
        assert all(item["completed"] is False for item in data_false["items"])

    def test_list_search_q_matches_title_and_description(self, client):
        self.seed_todos(client, 5)
        data_title = client.get(f"{BASE}?q=task 1", auth=ALICE).json()
        assert [t["title"] for t in data_title["items"]] == ["Task 1"]

        data_desc = client.get(f"{BASE}?q=Desc 2", auth=ALICE).json()
        assert [t["description"] for t in data_desc["items"]] == ["Desc 2"]

    def test_list_sort_and_order(self, client):
        ids = self.seed_todos(client, 5)

        res_desc = client.get(f"{BASE}?sort=-created_at", auth=ALICE).json()
        assert [t["id"] for t in res_desc["items"]] == list(reversed(ids))

        res_order_desc = client.get(f"{BASE}?sort=created_at&order=desc", auth=ALICE).json()
        assert [t["id"] for t in res_order_desc["items"]] == list(reversed(ids))

        res_unknown = client.get(f"{BASE}?sort=title", auth=ALICE).json()
        assert [t["id"] for t in res_unknown["items"]] == ids

    def test_list_invalid_order_param(self, client):
        res = client.get(f"{BASE}?order=invalid", auth=ALICE)
        assert res.status_code == 400
        body = res.json()
        assert body["error"] == "BadRequest"
        assert body["message"] == "order must be 'asc' or 'desc'"
        assert body["detail"] is None

    def test_stats_match_list(self, client):
        self.seed_todos(client, 5)
        create(client, auth=BOB, title="Not counted")
        res = client.get(f"{BASE}stats", auth=ALICE)
        assert res.status_code == 200
        assert res.json() == {"total": 5, "active": 2, "completed": 3}


class TestValidationErrors:
    def test_create_validation_error_title_empty(self, client):
        res = client.post(BASE, json={"title": "  ", "description": "x"}, auth=ALICE)
        assert res.status_code == 422
        body = res.json()
        assert body.get("error") == "ValidationError"
        assert body.get("message") == "Request validation failed"
        assert isinstance(body.get("detail"), list)

    def test_create_validation_error_title_too_long(self, client):
        res = client.post(BASE, json={"title": "x" * 201}, auth=ALICE)
        assert res.status_code == 422

    def test_create_validation_error_bad_priority(self, client):
        res = client.post(BASE, json={"title": "ok", "priority": "urgent"}, auth=ALICE)
        assert res.status_code == 422

    def test_patch_rejects_empty_or_null_title(self, client):
        tid = create(client, title="Keep me")["id"]
        assert client.patch(f"{BASE}{tid}", json={"title": ""}, auth=ALICE).status_code == 422
        assert client.patch(f"{BASE}{tid}", json={"title": None}, auth=ALICE).status_code == 422
        assert client.get(f"{BASE}{tid}", auth=ALICE).json()["title"] == "Keep me"

    def test_patch_validation_error_bad_due_date(self, client):
        tid = create(client, title="Due date bad")["id"]

        res_patch = client.patch(f"{BASE}{tid}", json={"due_date": "not-a-date"}, auth=ALICE)
        assert res_patch.status_code == 422
        body = res_patch.json()
        assert body.get("error") == "ValidationError"
        assert isinstance(body.get("detail"), list)
