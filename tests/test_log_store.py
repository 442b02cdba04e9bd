import threading
from datetime import datetime, timedelta, timezone

from smtp_service.extensions import db
from smtp_service.models import EmailLog
from smtp_service.storage import LogFilter, get_storage
from smtp_service.storage.base import isoformat, parse_instant


def _append_many(store, n, **fields):
    return [store.append({"status": "success", "subject": f"msg {i}", **fields}) for i in range(n)]


def test_append_assigns_id_and_timestamp_and_round_trips(app):
    with app.app_context():
        store = get_storage().logs
        rec = store.append({
            "status": "success",
            "to": "alice@example.com",
            "from": "sender@example.com",
            "subject": "Hello",
            "response": "250 OK",
            "meta": {"messageId": "<abc@local>"},
        })
        assert rec["id"]
        assert parse_instant(rec["timestamp"]) is not None
        assert rec["provider"] == "smtp"

        page = store.query({})
        assert page["total"] == 1
        assert page["items"] == [rec]


def test_list_recipients_survive_the_round_trip(app):
    with app.app_context():
        store = get_storage().logs
        rec = store.append({"status": "queued", "to": ["a@example.com", "b@example.com"]})
        item = store.query({})["items"][0]
        assert item["to"] == ["a@example.com", "b@example.com"]
        assert item == rec


def test_every_record_key_is_present(app):
    with app.app_context():
        store = get_storage().logs
        store.append({"status": "other"})
        item = store.query({})["items"][0]
        assert set(item) == {"id", "timestamp", "status", "to", "from", "subject", "provider", "response", "error", "meta"}
        assert item["to"] is None
        assert item["error"] is None


def test_empty_store_returns_zero_records(app):
    with app.app_context():
        page = get_storage().logs.query({"limit": 10})
        assert page == {"total": 0, "offset": 0, "limit": 10, "items": []}


def test_newest_first(app):
    with app.app_context():
        store = get_storage().logs
        first, second, third = _append_many(store, 3)
        ids = [r["id"] for r in store.query({})["items"]]
        assert ids == [third["id"], second["id"], first["id"]]
        assert first["timestamp"] < second["timestamp"] < third["timestamp"]


def test_filters_are_a_conjunction(app):
    with app.app_context():
        store = get_storage().logs
        store.append({"status": "failed", "to": "bob@example.com", "subject": "Invoice"})
        store.append({"status": "failed", "to": "carol@example.com", "subject": "Invoice"})
        store.append({"status": "success", "to": "bob@example.com", "subject": "Invoice"})
        store.append({"status": "failed", "to": "BOB@example.com", "subject": "Receipt"})

        page = store.query({"status": "failed", "to": "bob", "contains": "invoice"})
        assert page["total"] == 1
        item = page["items"][0]
        assert (item["status"], item["to"], item["subject"]) == ("failed", "bob@example.com", "Invoice")

        # substring match is case-insensitive
        assert store.query({"to": "BOB"})["total"] == 3


def test_status_accepts_comma_list(app):
    with app.app_context():
        store = get_storage().logs
        for status in ("success", "failed", "spam", "queued"):
            store.append({"status": status})
        page = store.query({"status": "success,failed"})
        assert page["total"] == 2
        assert {i["status"] for i in page["items"]} == {"success", "failed"}


def test_contains_matches_response(app):
    with app.app_context():
        store = get_storage().logs
        store.append({"status": "success", "subject": "Hi", "response": "250 2.0.0 Ok: queued as 4F2"})
        store.append({"status": "success", "subject": "Hi", "response": "250 Accepted"})
        assert store.query({"contains": "queued as"})["total"] == 1


def test_sender_filter(app):
    with app.app_context():
        store = get_storage().logs
        store.append({"status": "success", "from": "billing@acme.test"})
        store.append({"status": "success", "from": "support@acme.test"})
        page = store.query({"from": "billing"})
        assert [i["from"] for i in page["items"]] == ["billing@acme.test"]


def test_like_wildcards_are_literal(app):
    with app.app_context():
        store = get_storage().logs
        store.append({"status": "success", "subject": "100% off"})
        store.append({"status": "success", "subject": "1000 offers"})
        assert store.query({"contains": "0%"})["total"] == 1


def test_pagination_is_stable_and_complete(app):
    with app.app_context():
        store = get_storage().logs
        _append_many(store, 5)
        everything = [r["id"] for r in store.query({})["items"]]

        pages = []
        for offset in (0, 2, 4):
            page = store.query({"limit": 2, "offset": offset})
            assert page["total"] == 5
            assert page["limit"] == 2
            assert page["offset"] == offset
            pages.extend(r["id"] for r in page["items"])
        assert pages == everything

        assert store.query({"offset": 50})["items"] == []


def test_bad_limit_and_offset_fall_back_to_defaults(app):
    with app.app_context():
        page = get_storage().logs.query({"limit": "abc", "offset": "-3"})
        assert page["limit"] == 100
        assert page["offset"] == 0


def test_date_bounds_are_inclusive(app):
    with app.app_context():
        store = get_storage().logs
        before = store.append({"status": "success", "subject": "before"})
        target = store.append({"status": "success", "subject": "target"})
        after = store.append({"status": "success", "subject": "after"})

        page = store.query({"start": target["timestamp"], "end": target["timestamp"]})
        assert [i["id"] for i in page["items"]] == [target["id"]]

        page = store.query({"start": target["timestamp"]})
        assert {i["id"] for i in page["items"]} == {target["id"], after["id"]}

        page = store.query({"end": before["timestamp"]})
        assert [i["id"] for i in page["items"]] == [before["id"]]

        later = isoformat(parse_instant(after["timestamp"]) + timedelta(days=1))
        assert store.query({"start": later})["total"] == 0


def test_unparseable_dates_are_ignored(app):
    with app.app_context():
        store = get_storage().logs
        _append_many(store, 2)
        assert store.query({"start": "not-a-date", "end": "yesterday-ish"})["total"] == 2


def test_z_suffix_dates(app):
    with app.app_context():
        store = get_storage().logs
        rec = store.append({"status": "success"})
        ts = parse_instant(rec["timestamp"])
        z = (ts - timedelta(seconds=1)).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
        assert store.query({"start": z})["total"] == 1


def test_log_filter_from_params():
    flt = LogFilter.from_params({"status": ["success", " failed "], "to": "Bob", "limit": "5"})
    assert flt.statuses == ("success", "failed")
    assert flt.to == "bob"
    assert flt.limit == 5
    assert flt.start is None

    assert LogFilter.coerce(flt) is flt
    assert LogFilter.coerce(None) == LogFilter()


def test_failed_send_example(app):
    with app.app_context():
        store = get_storage().logs
        store.append({"status": "failed", "to": "a@b.com", "subject": "X", "error": "timeout"})
        page = store.query({"status": "failed", "contains": "X"})
        assert page["total"] == 1
        assert (page["items"][0]["to"], page["items"][0]["error"]) == ("a@b.com", "timeout")
        assert store.query({"status": "success"})["total"] == 0


def test_concurrent_appends_are_all_kept(app):
    threads_n, per_thread = 8, 25
    barrier = threading.Barrier(threads_n)
    appended, errors = [], []

    def worker(n):
        with app.app_context():
            store = get_storage().logs
            barrier.wait()
            try:
                for i in range(per_thread):
                    appended.append(store.append({"status": "queued", "subject": f"t{n}-{i}"}))
            except Exception as exc:
                errors.append(exc)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(threads_n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    with app.app_context():
        page = get_storage().logs.query({"limit": 1000})
    ids = [i["id"] for i in page["items"]]
    assert page["total"] == threads_n * per_thread
    assert len(ids) == len(set(ids)) == threads_n * per_thread
    assert set(ids) == {r["id"] for r in appended}
    assert {i["subject"] for i in page["items"]} == {f"t{n}-{i}" for n in range(threads_n) for i in range(per_thread)}


def test_equal_timestamps_page_deterministically(make_app):
    app = make_app("postgres")
    stamp = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    with app.app_context():
        for rid in ("b", "d", "a", "c"):
            db.session.add(EmailLog(id=rid, timestamp=stamp, status="success", provider="smtp"))
        db.session.commit()

        store = get_storage().logs
        pages = [store.query({"limit": 1, "offset": n})["items"][0]["id"] for n in range(4)]
        assert pages == ["d", "c", "b", "a"]
        assert [i["id"] for i in store.query({})["items"]] == pages
