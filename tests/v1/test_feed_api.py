"""Tests for publishing and reading feeds over HTTP."""

import time

from fastapi import status

from dchannel.services.crypto import X25519Identity, decrypt_bytes


def _publish(client, **data):
    files = data.pop("files", None)
    return client.post("/api/v1/publish", data=data, files=files)


def test_publish_requires_unlocked_identity(client) -> None:
    response = _publish(client, body="hello")
    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    assert response.json()["data"]["error"] == "key_not_ready"


def test_publish_and_walk(unlocked_client) -> None:
    first = _publish(unlocked_client, body="hello")
    assert first.status_code == status.HTTP_200_OK
    first_body = first.json()
    assert first_body["code"] == 1
    assert first_body["type"] == "PostRecord"
    assert first_body["data"]["next"] == ""

    second = _publish(unlocked_client, body="world").json()["data"]
    assert second["next"] == first_body["data"]["cid"]

    feed = unlocked_client.get(f"/api/v1/feed/{second['cid']}").json()
    assert feed["code"] == 1
    assert [entry["post"]["body"] for entry in feed["data"]] == ["world", "hello"]

    limited = unlocked_client.get(f"/api/v1/feed/{second['cid']}", params={"limit": 1}).json()
    assert len(limited["data"]) == 1


def test_publish_encrypted_with_attachment(unlocked_client) -> None:
    bob = X25519Identity.generate()
    response = _publish(
        unlocked_client,
        body="for bob",
        to=str(bob.recipient),
        files=[("attachments", ("notes.txt", b"secret notes", "text/plain"))],
    )
    assert response.status_code == status.HTTP_200_OK
    cid = response.json()["data"]["cid"]

    listing = unlocked_client.get(f"/api/v1/ipfs/{cid}").json()
    assert listing["data"] == ["meta.json", "notes.txt", "post.json"]

    # The author reads it back through self-inclusion.
    attachment = unlocked_client.get(f"/api/v1/ipfs/{cid}/notes.txt")
    assert attachment.status_code == status.HTTP_200_OK
    assert attachment.content == b"secret notes"

    meta = unlocked_client.get(f"/api/v1/ipfs/{cid}/meta.json").json()
    own = unlocked_client.get("/api/v1/identity/recipient").json()["data"]
    assert meta["to"] == [str(bob.recipient), own]


def test_bob_can_decrypt_stored_post(unlocked_client, app) -> None:
    bob = X25519Identity.generate()
    cid = _publish(unlocked_client, body="hi bob", to=str(bob.recipient)).json()["data"]["cid"]

    raw = (app.state.objects.root / cid / "post.json").read_bytes()
    assert b"hi bob" not in raw
    assert b'"hi bob"' in decrypt_bytes([bob], raw)


def test_reserved_attachment_name(unlocked_client) -> None:
    response = _publish(
        unlocked_client,
        body="x",
        files=[("attachments", ("meta.json", b"{}", "application/json"))],
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["data"] == {
        "error": "filename_conflict",
        "stage": "attachments",
        "message": "attachment name 'meta.json' is reserved",
    }


def test_invalid_recipient(unlocked_client) -> None:
    response = _publish(unlocked_client, body="x", to="dcage1bogus")
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["data"]["stage"] == "recipients"


def test_resolve_published_name(unlocked_client) -> None:
    record = _publish(unlocked_client, body="hello").json()["data"]

    # The name is published in the background after the head moves.
    for _ in range(50):
        response = unlocked_client.get(f"/api/v1/ipns/{record['name']}")
        if response.json()["code"] == 1:
            break
        time.sleep(0.05)
    assert response.json()["data"] == {"path": f"/ipfs/{record['cid']}"}


def test_resolve_unknown_name(client) -> None:
    response = client.get("/api/v1/ipns/dcnunknown")
    assert response.status_code == status.HTTP_502_BAD_GATEWAY
    assert response.json()["data"]["error"] == "resolution_error"


def test_read_missing_object(client) -> None:
    response = client.get("/api/v1/ipfs/b3missing/post.json")
    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json()["code"] == 0


def test_feed_limit_validation(client) -> None:
    response = client.get("/api/v1/feed/b3abc", params={"limit": 0})
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_feed_with_garbled_post_still_lists_entry(client, app) -> None:
    address = app.state.objects._upload(
        {
            "post.json": b"dchannel-encryption.org/v1\n-> X25519 AAAA\n\xff\xfe\n--- AAAA\n",
            "meta.json": b'{"to": [], "next": "", "created_at": ""}',
        }
    )

    response = client.get(f"/api/v1/feed/{address}")
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["data"][0]["post"] is None

    raw = client.get(f"/api/v1/ipfs/{address}/post.json")
    assert raw.status_code == status.HTTP_400_BAD_REQUEST
    assert raw.json()["data"]["error"] == "decryption_error"
