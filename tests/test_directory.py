import pytest

from dchannel.core.errors import DuplicateEntryError, NotFoundError, PersistenceError
from dchannel.services.directory import ALL_ROWS


def test_add_and_list_follows(directory):
    first = directory.add_follow("Alice", "k51alice")
    directory.add_follow("Bob", "k51bob")

    follows = directory.list_follows()
    assert [f.external_name for f in follows] == ["k51alice", "k51bob"]
    assert follows[0].id == first.id
    assert follows[0].latest_address == ""
    assert not follows[0].is_self


def test_list_follows_pagination(directory):
    for index in range(12):
        directory.add_follow(f"peer {index}", f"k51peer{index}")

    assert len(directory.list_follows()) == 10
    assert len(directory.list_follows(limit=ALL_ROWS)) == 12
    page = directory.list_follows(skip=10, limit=5)
    assert [f.external_name for f in page] == ["k51peer10", "k51peer11"]


def test_duplicate_follow_is_rejected(directory):
    directory.add_follow("Alice", "k51alice")
    with pytest.raises(DuplicateEntryError):
        directory.add_follow("Alice again", "k51alice")


def test_unfollow_then_follow_revives_the_row(directory):
    follow = directory.add_follow("Alice", "k51alice")
    directory.update_follow_head(follow.id, "b3head")
    directory.unfollow(follow.id)
    assert directory.list_follows() == []
    with pytest.raises(NotFoundError):
        directory.get_follow(follow.id)

    revived = directory.add_follow("", "k51alice")
    assert revived.id == follow.id
    assert revived.display_name == "Alice"
    assert revived.latest_address == "b3head"


def test_unfollow_unknown(directory):
    with pytest.raises(NotFoundError):
        directory.unfollow(999)


def test_update_follow_head(directory):
    follow = directory.add_follow("Alice", "k51alice")
    updated = directory.update_follow_head(follow.id, "b3new")
    assert updated.latest_address == "b3new"
    assert directory.get_follow(follow.id).latest_address == "b3new"


def test_update_follow_head_ignores_unfollowed_rows(directory):
    follow = directory.add_follow("Alice", "k51alice")
    directory.unfollow(follow.id)
    with pytest.raises(NotFoundError):
        directory.update_follow_head(follow.id, "b3new")


def test_peers(directory):
    peer = directory.add_peer("Carol", " dcage1carol ", "pubkey", "12D3KooWcarol")
    assert peer.recipient == "dcage1carol"
    assert [p.display_name for p in directory.list_peers()] == ["Carol"]

    directory.remove_peer(peer.id)
    assert directory.list_peers() == []
    with pytest.raises(NotFoundError):
        directory.remove_peer(peer.id)


def test_create_channel_mirrors_a_self_follow(directory):
    channel = directory.create_channel("self", "k51self", "self")
    assert channel.latest_address == ""
    assert directory.get_channel("self").id == channel.id
    assert directory.get_channel("other") is None

    (mirror,) = directory.list_follows()
    assert mirror.external_name == "k51self"
    assert mirror.is_self

    with pytest.raises(DuplicateEntryError):
        directory.create_channel("self", "k51self", "self")


def test_self_mirror_cannot_be_unfollowed(directory):
    directory.create_channel("self", "k51self", "self")
    (mirror,) = directory.list_follows()
    with pytest.raises(PersistenceError):
        directory.unfollow(mirror.id)


def test_set_channel_head_updates_both_rows(directory):
    directory.create_channel("self", "k51self", "self")
    directory.set_channel_head("self", "b3first")

    assert directory.get_channel("self").latest_address == "b3first"
    assert directory.list_follows()[0].latest_address == "b3first"

    with pytest.raises(NotFoundError):
        directory.set_channel_head("missing", "b3x")


def test_remove_channel_retires_mirror(directory):
    directory.create_channel("news", "k51news", "news")
    removed = directory.remove_channel("news")
    assert removed.name == "news"
    assert directory.list_channels() == []
    assert directory.list_follows() == []
    with pytest.raises(NotFoundError):
        directory.remove_channel("news")


def test_messages_newest_first(directory):
    directory.append_message("first", sender="12D3KooWa")
    directory.append_message("second")
    messages = directory.list_messages()
    assert [m.body for m in messages] == ["second", "first"]
    assert messages[1].sender == "12D3KooWa"


def test_export_document(directory):
    directory.add_follow("Alice", "k51alice")
    directory.add_peer("Carol", "dcage1carol")
    document = directory.export_document()
    assert [f["external_name"] for f in document["follows"]] == ["k51alice"]
    assert [p["recipient"] for p in document["peers"]] == ["dcage1carol"]
