import pytest

from nexachat.db.errors import (
    DuplicateName,
    DuplicateRoomName,
    InvalidInput,
    InvalidReference,
    InvalidState,
    MessageNotFound,
    RoomNotFound,
    UserNotFound,
)
from nexachat.db.models import PollData


def test_scenario_create_post_edit_delete(repo, clock):
    alice = repo.create_user("alice")
    with pytest.raises(DuplicateName):
        repo.create_user("alice")

    general = repo.create_room("general")
    msg = repo.create_message(general.id, alice.id, "hi")
    assert repo.get_room(general.id).message_count == 1

    views = repo.get_messages_by_room(general.id, 10)
    assert len(views) == 1
    assert views[0].message.content == "hi"
    assert views[0].user.username == "alice"

    clock.advance(seconds=30)
    repo.edit_message(msg.id, "hi there")
    fetched = repo.get_messages_by_room(general.id, 10)[0].message
    assert fetched.content == "hi there"
    assert fetched.edited_at == clock()

    repo.delete_message(msg.id)
    assert repo.get_messages_by_room(general.id, 10) == []
    assert repo.get_room(general.id).message_count == 0


def test_duplicate_room_name(repo):
    repo.create_room("general", "everyone")
    with pytest.raises(DuplicateRoomName):
        repo.create_room("general")


def test_room_lookup(repo):
    room = repo.create_room("general", "everyone")
    assert repo.get_room(room.id).description == "everyone"
    assert repo.get_room_by_name("general").id == room.id
    assert repo.get_room("missing") is None
    assert repo.get_room_by_name("missing") is None


def test_list_rooms_excludes_dms_and_counts_live(repo, alice, bob):
    general = repo.create_room("general")
    repo.get_or_create_dm_room(alice.id, bob.id)
    for text in ("a", "b", "c"):
        repo.create_message(general.id, alice.id, text)

    rooms = repo.list_rooms()
    assert [r.name for r in rooms] == ["general"]
    assert rooms[0].message_count == 3


def test_counter_tracks_inserts(repo, alice):
    room = repo.create_room("general")
    for i in range(5):
        repo.create_message(room.id, alice.id, f"m{i}")
    assert repo.get_room(room.id).message_count == 5


def test_ensure_rooms_only_creates_missing(repo):
    repo.create_room("random")
    created = repo.ensure_rooms({"general-chat": "talk", "random": None})
    assert created == ["general-chat"]
    assert repo.ensure_rooms({"general-chat": "talk", "random": None}) == []


def test_delete_room_cascades(repo, alice):
    room = repo.create_room("general")
    msg = repo.create_message(room.id, alice.id, "bye")
    assert repo.delete_room(room.id) is True
    assert repo.get_room(room.id) is None
    assert repo.get_message(msg.id) is None
    assert repo.delete_room(room.id) is False


def test_dangling_references_rejected(repo, alice):
    room = repo.create_room("general")
    with pytest.raises(InvalidReference):
        repo.create_message("no-room", alice.id, "x")
    with pytest.raises(RoomNotFound):
        repo.create_message("no-room", alice.id, "x")
    with pytest.raises(UserNotFound):
        repo.create_message(room.id, "no-user", "x")
    assert repo.get_room(room.id).message_count == 0


def test_window_is_most_recent_ascending(repo, clock, alice):
    room = repo.create_room("general")
    for i in range(6):
        repo.create_message(room.id, alice.id, f"m{i}")
        clock.advance(seconds=1)
    views = repo.get_messages_by_room(room.id, 3)
    assert [v.message.content for v in views] == ["m3", "m4", "m5"]


def test_same_timestamp_keeps_insert_order(repo, alice):
    room = repo.create_room("general")
    for i in range(4):
        repo.create_message(room.id, alice.id, f"m{i}")
    assert [v.message.content for v in repo.get_messages_by_room(room.id)] == ["m0", "m1", "m2", "m3"]


def test_messages_for_unknown_room(repo):
    with pytest.raises(RoomNotFound):
        repo.get_messages_by_room("missing")


def test_reply_resolved_inside_window_only(repo, clock, alice, bob):
    room = repo.create_room("general")
    original = repo.create_message(room.id, alice.id, "question")
    clock.advance(seconds=1)
    first = repo.create_message(room.id, bob.id, "answer", reply_to_id=original.id)
    clock.advance(seconds=1)
    repo.create_message(room.id, alice.id, "thanks", reply_to_id=first.id)

    views = repo.get_messages_by_room(room.id, 10)
    answer = views[1]
    assert answer.reply_to.message.id == original.id
    assert answer.reply_to.user.username == "alice"
    # one level only
    assert views[2].reply_to.reply_to is None

    narrow = repo.get_messages_by_room(room.id, 1)
    assert narrow[0].message.reply_to_id == first.id
    assert narrow[0].reply_to is None


def test_edit_and_delete_unknown_message(repo):
    with pytest.raises(MessageNotFound):
        repo.edit_message("missing", "x")
    with pytest.raises(MessageNotFound):
        repo.delete_message("missing")


def test_file_metadata_roundtrip(repo, alice):
    room = repo.create_room("general")
    msg = repo.create_message(
        room.id, alice.id, None, "image",
        file_name="cat.png", file_path="/uploads/abc.png", file_size=123,
        file_group_id="g1", group_index=0,
        attachments=[{"name": "b.pdf", "path": "/uploads/b.pdf", "size": 9}],
    )
    stored = repo.get_message(msg.id)
    assert stored.message_type == "image"
    assert stored.file_path == "/uploads/abc.png"
    assert stored.file_size == 123
    assert stored.group_index == 0
    assert stored.stored_paths() == ["/uploads/abc.png", "/uploads/b.pdf"]


def test_poll_voting(repo, alice, bob):
    room = repo.create_room("general")
    poll = repo.create_message(room.id, alice.id, None, "poll",
                               poll=PollData(question="Lunch?", options=["pizza", "sushi"]))
    repo.vote_poll(poll.id, alice.id, 1)
    updated = repo.vote_poll(poll.id, bob.id, 1)
    assert updated.poll.tally() == [0, 2]
    assert repo.get_message(poll.id).poll.tally() == [0, 2]

    with pytest.raises(InvalidState):
        repo.vote_poll(poll.id, alice.id, 0)
    carol = repo.create_user("carol")
    with pytest.raises(InvalidInput):
        repo.vote_poll(poll.id, carol.id, 5)


def test_poll_needs_options(repo, alice):
    room = repo.create_room("general")
    with pytest.raises(InvalidInput):
        repo.create_message(room.id, alice.id, None, "poll", poll=PollData(question="?", options=["one"]))
    text = repo.create_message(room.id, alice.id, "plain")
    with pytest.raises(InvalidState):
        repo.vote_poll(text.id, alice.id, 0)


def test_reaction_toggle(repo, alice, bob):
    room = repo.create_room("general")
    msg = repo.create_message(room.id, alice.id, "nice")
    assert repo.toggle_reaction(msg.id, bob.id, "👍") is True
    assert repo.toggle_reaction(msg.id, alice.id, "👍") is True
    view = repo.get_messages_by_room(room.id)[0]
    assert sorted(r.user_id for r in view.reactions) == sorted([alice.id, bob.id])

    assert repo.toggle_reaction(msg.id, bob.id, "👍") is False
    view = repo.get_messages_by_room(room.id)[0]
    assert [r.user_id for r in view.reactions] == [alice.id]


def test_delete_message_drops_reactions(repo, alice):
    room = repo.create_room("general")
    msg = repo.create_message(room.id, alice.id, "x")
    repo.toggle_reaction(msg.id, alice.id, "🔥")
    removed = repo.delete_message(msg.id)
    assert removed.id == msg.id
    assert repo.stats()["total_reactions"] == 0


def test_stats(repo, alice, bob):
    room = repo.create_room("general")
    repo.get_or_create_dm_room(alice.id, bob.id)
    repo.create_message(room.id, alice.id, "x")
    stats = repo.stats()
    assert stats["total_users"] == 3  # includes the bot
    assert stats["total_rooms"] == 1
    assert stats["dm_rooms"] == 1
    assert stats["total_messages"] == 1


def test_count_messages_referencing(repo, alice, bob):
    room = repo.create_room("general")
    first = repo.create_message(room.id, alice.id, None, "image", file_path="/uploads/a.png")
    repo.create_message(room.id, bob.id, None, "file",
                        attachments=[{"name": "a.png", "path": "/uploads/a.png"}, {"name": "b"}])
    assert repo.count_messages_referencing("/uploads/a.png") == 2
    assert repo.count_messages_referencing("/uploads/none.png") == 0

    repo.delete_message(first.id)
    assert repo.count_messages_referencing("/uploads/a.png") == 1
