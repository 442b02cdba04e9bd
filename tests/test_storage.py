import os

from smtp_service.storage import FILESYSTEM, RELATIONAL, StorageConfig, get_storage
from smtp_service.storage.base import MonotonicClock, field_text, field_value, resolve_backend


def test_resolve_backend():
    assert resolve_backend("postgres") == RELATIONAL
    assert resolve_backend(" PostgreSQL ") == RELATIONAL
    assert resolve_backend("filesystem") == FILESYSTEM
    assert resolve_backend("mongodb") == FILESYSTEM
    assert resolve_backend(None) == FILESYSTEM


def test_storage_config_resolves_relative_paths(tmp_path):
    cfg = StorageConfig.from_mapping(
        {"DB_PROVIDER": "filesystem", "LOG_DIR": "var/logs", "TEMPLATES_DIR": "var/tpl"},
        root=str(tmp_path),
    )
    assert cfg.log_file == os.path.join(str(tmp_path), "var", "logs", "email.log")
    assert cfg.log_dir == os.path.join(str(tmp_path), "var", "logs")
    assert cfg.templates_dir == os.path.join(str(tmp_path), "var", "tpl")


def test_clock_never_repeats():
    clock = MonotonicClock()
    stamps = [clock.now() for _ in range(1000)]
    assert all(a < b for a, b in zip(stamps, stamps[1:]))


def test_address_text_helpers():
    assert field_text(["a@x.test", "b@x.test"]) == '["a@x.test","b@x.test"]'
    assert field_value('["a@x.test","b@x.test"]') == ["a@x.test", "b@x.test"]
    assert field_value("[not json") == "[not json"
    assert field_text(None) is None
    assert field_value("a@x.test") == "a@x.test"


def test_filesystem_backend_selected(make_app):
    app = make_app("filesystem")
    with app.app_context():
        storage = get_storage()
        assert storage.backend == FILESYSTEM
        assert storage.degraded is False


def test_relational_backend_selected(make_app):
    app = make_app("postgres")
    with app.app_context():
        storage = get_storage()
        assert storage.backend == RELATIONAL
        assert storage.degraded is False


def test_unusable_database_falls_back_to_files(make_app, tmp_path, caplog):
    bad_url = f"sqlite:///{tmp_path / 'missing' / 'dir' / 'test.db'}"
    with caplog.at_level("WARNING", logger="smtp_service.storage"):
        app = make_app("postgres", SQLALCHEMY_DATABASE_URI=bad_url)

    with app.app_context():
        storage = get_storage()
        assert storage.backend == FILESYSTEM
        assert storage.degraded is True
        # and it still works
        storage.logs.append({"status": "success"})
        assert storage.logs.query({})["total"] == 1
    assert "falling back to filesystem" in caplog.text


def test_file_log_skips_partial_and_garbage_lines(make_app):
    app = make_app("filesystem")
    with app.app_context():
        store = get_storage().logs
        rec = store.append({"status": "success", "subject": "kept"})
        with open(store.path, "a", encoding="utf-8") as fh:
            fh.write("this is not json\n")
            fh.write('{"id": "half-written", "status": "succ')
        page = store.query({})
        assert page["total"] == 1
        assert page["items"][0]["id"] == rec["id"]


def test_file_log_created_on_first_append(make_app):
    app = make_app("filesystem")
    with app.app_context():
        store = get_storage().logs
        assert not os.path.exists(store.path)
        assert store.query({})["total"] == 0
        store.append({"status": "queued"})
        assert os.path.exists(store.path)


def test_file_log_append_after_torn_line_is_kept(make_app):
    app = make_app("filesystem")
    with app.app_context():
        store = get_storage().logs
        first = store.append({"status": "success", "subject": "first"})
        with open(store.path, "a", encoding="utf-8") as fh:
            fh.write('{"id": "half-written", "status": "succ')
        after = store.append({"status": "success", "subject": "after-crash"})

        page = store.query({})
        assert [i["id"] for i in page["items"]] == [after["id"], first["id"]]
        with open(store.path, encoding="utf-8") as fh:
            assert fh.read().endswith("\n")
