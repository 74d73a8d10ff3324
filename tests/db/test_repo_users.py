from datetime import timedelta

import pytest

from nexachat.db.errors import DuplicateName, DuplicateUsername, UserNotFound
from nexachat.db.models import PERMANENT_BAN, UserStatus


def _ids(users):
    return {u.id for u in users}


def test_create_user_defaults(repo, clock):
    user = repo.create_user("alice")
    assert user.id
    assert user.status == "online"
    assert user.is_admin is False
    assert user.last_seen == clock()
    assert repo.get_user(user.id).username == "alice"
    assert repo.get_user_by_username("alice").id == user.id


def test_duplicate_username_rejected(repo):
    repo.create_user("alice")
    with pytest.raises(DuplicateUsername):
        repo.create_user("alice")
    # DuplicateUsername is a DuplicateName
    with pytest.raises(DuplicateName):
        repo.create_user("alice")


def test_username_lookup_is_case_sensitive(repo):
    repo.create_user("alice")
    assert repo.get_user_by_username("Alice") is None
    assert repo.create_user("Alice").username == "Alice"


def test_unknown_lookups_return_none(repo):
    assert repo.get_user("nope") is None
    assert repo.get_user_by_username("nope") is None
    assert repo.update_user_status("nope", "away") is None
    assert repo.set_user_ban("nope", None) is None
    assert repo.delete_user("nope") is False


def test_update_status_stamps_last_seen(repo, clock, alice):
    clock.advance(minutes=3)
    updated = repo.update_user_status(alice.id, UserStatus.AWAY.value)
    assert updated.status == "away"
    assert updated.last_seen == clock()


def test_update_profile_collision(repo, alice, bob):
    with pytest.raises(DuplicateUsername):
        repo.update_user_profile(bob.id, "alice")
    renamed = repo.update_user_profile(alice.id, "alice2", "http://img/a.png")
    assert renamed.username == "alice2"
    assert renamed.profile_image == "http://img/a.png"
    # keeping your own name is not a collision
    assert repo.update_user_profile(bob.id, "bob").username == "bob"


def test_bot_account_created_once(repo):
    bots = [u for u in repo.list_users() if u.username == repo.bot_username]
    assert len(bots) == 1


def test_bot_always_online_and_self_heals(repo):
    bot = repo.get_bot_user()
    repo.update_user_status(bot.id, "offline")

    assert bot.id not in _ids(repo.get_offline_users())
    assert bot.id in _ids(repo.get_online_users())
    assert repo.get_user(bot.id).status == "online"


def test_offline_classification_by_last_seen(repo, clock, alice):
    clock.advance(minutes=1)
    assert alice.id not in _ids(repo.get_offline_users())
    clock.advance(minutes=5)
    assert alice.id in _ids(repo.get_offline_users())


def test_explicit_offline_status_is_offline(repo, alice):
    repo.update_user_status(alice.id, "offline")
    assert alice.id in _ids(repo.get_offline_users())
    assert alice.id not in _ids(repo.get_online_users())


def test_online_listing_uses_status(repo, alice, bob):
    repo.update_user_status(bob.id, "busy")
    online = _ids(repo.get_online_users())
    assert alice.id in online
    assert bob.id not in online


def test_ban_gating(repo, clock, alice, bob):
    repo.update_user_status(bob.id, "offline")
    repo.set_user_ban(alice.id, clock() + timedelta(minutes=10))
    repo.set_user_ban(bob.id, clock() + timedelta(minutes=10))

    assert alice.id not in _ids(repo.get_online_users())
    assert bob.id not in _ids(repo.get_offline_users())

    clock.advance(minutes=11)
    assert alice.id in _ids(repo.get_online_users())
    assert bob.id in _ids(repo.get_offline_users())


def test_permanent_ban_and_unban(repo, clock, alice):
    banned = repo.set_user_ban(alice.id, PERMANENT_BAN)
    assert banned.banned_until == PERMANENT_BAN
    clock.advance(days=365)
    assert alice.id not in _ids(repo.get_online_users())

    assert repo.set_user_ban(alice.id, None).banned_until is None
    assert alice.id in _ids(repo.get_online_users())


def test_set_admin(repo, alice):
    assert repo.set_user_admin(alice.id, True).is_admin is True
    assert repo.get_user(alice.id).is_admin is True
    assert repo.set_user_admin(alice.id, False).is_admin is False


def test_delete_user_cascades(repo, alice, bob):
    carol = repo.create_user("carol")
    general = repo.create_room("general")
    kept = repo.create_message(general.id, bob.id, "from bob")
    repo.create_message(general.id, alice.id, "from alice")
    repo.toggle_reaction(kept.id, alice.id, "👍")
    dm = repo.get_or_create_dm_room(alice.id, bob.id)
    group = repo.get_or_create_dm_room(bob.id, carol.id)
    group = repo.add_dm_participant(group.id, alice.id)
    repo.create_message(group.id, alice.id, "group hello")
    repo.create_message(group.id, carol.id, "group reply")

    assert repo.delete_user(alice.id) is True

    assert repo.get_user(alice.id) is None
    assert repo.get_room(dm.id) is None
    views = repo.get_messages_by_room(general.id)
    assert [v.message.content for v in views] == ["from bob"]
    assert views[0].reactions == []
    assert repo.get_room(general.id).message_count == 1
    with pytest.raises(UserNotFound):
        repo.get_or_create_dm_room(alice.id, bob.id)

    # the group survives without alice, keyed to the remaining pair
    survivor = repo.get_room(group.id)
    assert survivor.participants == [bob.id, carol.id]
    assert survivor.message_count == 1
    assert [v.message.content for v in repo.get_messages_by_room(group.id)] == ["group reply"]
    assert repo.find_dm_room(carol.id, bob.id).id == group.id


def test_delete_user_drops_group_that_would_duplicate_a_pair(repo, alice, bob):
    carol = repo.create_user("carol")
    pair = repo.get_or_create_dm_room(bob.id, carol.id)
    group = repo.create_room("trio", is_dm=True, participants=[alice.id, bob.id, carol.id])

    repo.delete_user(alice.id)

    assert repo.get_room(group.id) is None
    assert repo.find_dm_room(bob.id, carol.id).id == pair.id


def test_bootstrap_admin_only_when_none_exists(repo, alice, bob):
    assert repo.bootstrap_admin("ghost") is None
    assert repo.bootstrap_admin(alice.id).is_admin is True
    assert repo.bootstrap_admin(bob.id) is None
    assert repo.get_user(bob.id).is_admin is False
