import os
import threading

import pytest

from smtp_service.errors import Conflict, NotFound, ValidationError
from smtp_service.storage import get_storage, normalize_id
from smtp_service.storage.base import parse_instant

WELCOME = {
    "id": "welcome",
    "name": "Welcome mail",
    "subject": "Welcome, {{name}}",
    "html": "<p>Hello {{name}}</p>",
    "defaults": {"from": "hello@acme.test"},
}


@pytest.mark.parametrize("raw, expected", [
    ("Welcome", "welcome"),
    ("My Welcome!", "mywelcome"),
    ("order_shipped-v2", "order_shipped-v2"),
    ("../../etc/passwd", "etcpasswd"),
    ("***", ""),
])
def test_normalize_id(raw, expected):
    assert normalize_id(raw) == expected
    assert normalize_id(normalize_id(raw)) == normalize_id(raw)


def test_create_then_get(app):
    with app.app_context():
        store = get_storage().templates
        created = store.create(WELCOME)
        assert created["id"] == "welcome"
        assert created["createdAt"] == created["updatedAt"]
        assert store.get("welcome") == created
        # lookups normalize too
        assert store.get("WELCOME")["id"] == "welcome"


def test_create_fills_name_and_id(app):
    with app.app_context():
        store = get_storage().templates
        tpl = store.create({"subject": "s", "html": "h"})
        assert tpl["id"] == normalize_id(tpl["id"])
        assert tpl["name"] == tpl["id"]
        assert tpl["defaults"] == {}


def test_create_conflict(app):
    with app.app_context():
        store = get_storage().templates
        store.create(WELCOME)
        with pytest.raises(Conflict):
            store.create({**WELCOME, "subject": "other"})
        with pytest.raises(Conflict):
            store.create({**WELCOME, "id": "WelCome"})
        assert store.get("welcome")["subject"] == WELCOME["subject"]


def test_create_rejects_id_that_normalizes_to_nothing(app):
    with app.app_context():
        with pytest.raises(ValidationError):
            get_storage().templates.create({**WELCOME, "id": "!!!"})


def test_concurrent_create_has_one_winner(app):
    results, errors = [], []
    barrier = threading.Barrier(8)

    def worker(n):
        with app.app_context():
            store = get_storage().templates
            barrier.wait()
            try:
                results.append(store.create({**WELCOME, "name": f"writer {n}"}))
            except Conflict as exc:
                errors.append(exc)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 1
    assert len(errors) == 7
    with app.app_context():
        assert get_storage().templates.get("welcome")["name"] == results[0]["name"]


def test_partial_update(app):
    with app.app_context():
        store = get_storage().templates
        created = store.create(WELCOME)
        updated = store.update("welcome", {"name": "Renamed"})

        assert updated["name"] == "Renamed"
        assert updated["subject"] == created["subject"]
        assert updated["html"] == created["html"]
        assert updated["defaults"] == created["defaults"]
        assert updated["createdAt"] == created["createdAt"]
        assert parse_instant(updated["updatedAt"]) > parse_instant(created["updatedAt"])
        assert store.get("welcome") == updated


def test_update_treats_none_as_omitted(app):
    with app.app_context():
        store = get_storage().templates
        store.create(WELCOME)
        updated = store.update("welcome", {"name": None, "html": "<p>new</p>", "id": "hijack"})
        assert updated["name"] == WELCOME["name"]
        assert updated["html"] == "<p>new</p>"
        assert updated["id"] == "welcome"
        with pytest.raises(NotFound):
            store.get("hijack")


def test_update_missing(app):
    with app.app_context():
        store = get_storage().templates
        with pytest.raises(NotFound):
            store.update("nope", {"name": "x"})
        with pytest.raises(NotFound):
            store.update("???", {"name": "x"})


def test_delete_then_get(app):
    with app.app_context():
        store = get_storage().templates
        store.create(WELCOME)
        store.delete("welcome")
        with pytest.raises(NotFound):
            store.get("welcome")
        with pytest.raises(NotFound):
            store.delete("welcome")


def test_list_is_sorted_summaries(app):
    with app.app_context():
        store = get_storage().templates
        assert store.list() == []
        for tid in ("zeta", "alpha", "mid"):
            store.create({**WELCOME, "id": tid, "name": tid.title()})
        items = store.list()
        assert [t["id"] for t in items] == ["alpha", "mid", "zeta"]
        assert set(items[0]) == {"id", "name", "updatedAt"}
        assert items[0]["name"] == "Alpha"


def test_file_store_ignores_temp_files(make_app, tmp_path):
    app = make_app("filesystem")
    with app.app_context():
        store = get_storage().templates
        store.create(WELCOME)
        with open(os.path.join(store.directory, ".other.0123abcd.tmp"), "w") as fh:
            fh.write("{")
        assert [t["id"] for t in store.list()] == ["welcome"]
        assert sorted(os.listdir(store.directory)) == [".other.0123abcd.tmp", "welcome.json"]
