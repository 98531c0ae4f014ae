import asyncio

import pytest

from tripdesk.backend import ALL_EVENTS, INSERT, UPDATE, Backend, BackendError, ChangeFeed, ChangeEvent


def _participant_row(name="Wanjiru Kamau", **overrides):
    row = {
        "full_name": name,
        "phone_number": "0712345678",
        "email": "w@example.com",
        "number_of_guests": 1,
        "payment_status": "pending",
        "amount_paid": 0,
    }
    row.update(overrides)
    return row


def test_insert_assigns_id_and_created_at(backend):
    created = backend.rows.insert("participants", [_participant_row()])
    assert len(created) == 1
    row = created[0]
    assert row["id"]
    assert row["created_at"]
    assert row["avatar_url"] is None
    assert backend.rows.select("participants") == created


def test_select_orders_by_created_at(backend):
    for name in ("Amina", "Brian", "Chebet"):
        backend.rows.insert("participants", [_participant_row(name)])

    ascending = backend.rows.select("participants", ["full_name", "created_at"], "created_at")
    descending = backend.rows.select("participants", ["full_name"], "created_at", descending=True)

    assert [r["full_name"] for r in ascending] == ["Amina", "Brian", "Chebet"]
    assert [r["full_name"] for r in descending] == ["Chebet", "Brian", "Amina"]
    assert set(descending[0]) == {"full_name"}


def test_update_touches_only_patched_field(backend):
    row = backend.rows.insert("participants", [_participant_row()])[0]
    updated = backend.rows.update("participants", {"avatar_url": "https://example.com/a.png"}, row["id"])
    assert updated[0]["avatar_url"] == "https://example.com/a.png"
    assert {k: v for k, v in updated[0].items() if k != "avatar_url"} == {
        k: v for k, v in row.items() if k != "avatar_url"
    }
    assert backend.rows.update("participants", {"avatar_url": "x"}, "missing-id") == []


def test_unknown_table_and_column_raise_backend_error(backend):
    with pytest.raises(BackendError, match='relation "guests" does not exist'):
        backend.rows.select("guests")
    with pytest.raises(BackendError, match="participants.nickname"):
        backend.rows.insert("participants", [_participant_row(nickname="Wawa")])
    with pytest.raises(BackendError):
        backend.rows.insert("participants", [{"full_name": "No phone"}])


def test_backend_requires_url_and_key(config):
    with pytest.raises(BackendError):
        Backend("", "key", runner=None, storage_dir=config.STORAGE_DIR)


def test_feed_delivers_synchronously_without_event_loop():
    feed = ChangeFeed()
    seen = []
    sub = feed.subscribe("participants", {INSERT}, seen.append)

    feed.publish(ChangeEvent("participants", INSERT, {"id": "1"}))
    feed.publish(ChangeEvent("participants", UPDATE, {"id": "1"}))
    feed.publish(ChangeEvent("donations", INSERT, {"id": "2"}))
    assert [e.record["id"] for e in seen] == ["1"]

    sub.unsubscribe()
    feed.publish(ChangeEvent("participants", INSERT, {"id": "3"}))
    assert len(seen) == 1
    assert feed.subscriber_count() == 0


def test_feed_rejects_unknown_event_types():
    with pytest.raises(ValueError):
        ChangeFeed().subscribe("participants", {"TRUNCATE"}, lambda event: None)


@pytest.mark.anyio
async def test_feed_delivers_on_subscriber_loop_from_worker_thread(backend):
    received = asyncio.Event()
    events = []

    def on_change(event):
        events.append(event)
        received.set()

    backend.rows.subscribe("participants", ALL_EVENTS, on_change)
    await asyncio.to_thread(backend.rows.insert, "participants", [_participant_row()])
    await asyncio.wait_for(received.wait(), timeout=5)

    assert events[0].type == INSERT
    assert events[0].record["full_name"] == "Wanjiru Kamau"


def test_storage_upload_and_public_url(backend, config, tmp_path):
    key = backend.storage.upload("participant-avatars", "avatars/a.png", b"png", "image/png")
    assert key == "participant-avatars/avatars/a.png"
    assert (tmp_path / "storage" / "participant-avatars" / "avatars" / "a.png").read_bytes() == b"png"
    assert (
        backend.storage.get_public_url("participant-avatars", "avatars/a.png")
        == "http://testserver/storage/v1/object/public/participant-avatars/avatars/a.png"
    )


def test_storage_refuses_overwrite_and_escape(backend):
    backend.storage.upload("participant-avatars", "avatars/a.png", b"one")
    with pytest.raises(BackendError, match="already exists"):
        backend.storage.upload("participant-avatars", "avatars/a.png", b"two")
    backend.storage.upload("participant-avatars", "avatars/a.png", b"two", upsert=True)
    with pytest.raises(BackendError):
        backend.storage.upload("participant-avatars", "../outside.png", b"x")
