from datetime import datetime, timezone

import pytest

from notekeeper.errors import ConflictError, ValidationError
from notekeeper.schemas import NoteRecord, UserRecord
from notekeeper.store import NOTES, USERS


def new_note(owner, title="Groceries", content="milk, eggs"):
    return NoteRecord(user_id=owner.id, title=title, content=content)


def test_insert_then_get_round_trips(store, alice):
    note = new_note(alice)
    stored = store.insert(NOTES, note)

    assert stored.created_at is not None
    assert stored.updated_at == stored.created_at

    fetched = store.get_by_id(NOTES, note.id, alice.id)
    assert fetched == stored
    assert (fetched.id, fetched.user_id, fetched.title, fetched.content) == (
        note.id, alice.id, "Groceries", "milk, eggs",
    )


def test_insert_accepts_plain_mappings(store, alice):
    stored = store.insert(NOTES, {"userId": alice.id, "title": "from dict"})
    assert stored.id
    assert store.get_by_id(NOTES, stored.id, alice.id).title == "from dict"


def test_notes_are_invisible_to_other_owners(store, alice, bob):
    note = store.insert(NOTES, new_note(alice))

    assert store.get_by_id(NOTES, note.id, bob.id) is None
    assert store.update(NOTES, note.id, bob.id, {"title": "hijacked"}) is None
    assert store.delete(NOTES, note.id, bob.id) is False
    assert store.list_by_owner(NOTES, bob.id) == []

    untouched = store.get_by_id(NOTES, note.id, alice.id)
    assert untouched.title == "Groceries"


def test_partial_update_keeps_omitted_fields(store, alice):
    note = store.insert(NOTES, new_note(alice))

    updated = store.update(NOTES, note.id, alice.id, {"title": "Shopping"})

    assert updated.title == "Shopping"
    assert updated.content == "milk, eggs"
    assert updated.created_at == note.created_at
    assert updated.updated_at >= note.updated_at
    assert store.get_by_id(NOTES, note.id, alice.id).title == "Shopping"


def test_update_refreshes_timestamp_with_identical_values(store, alice):
    old = datetime(2020, 1, 1, tzinfo=timezone.utc)
    note = store.insert(NOTES, NoteRecord(user_id=alice.id, title="t", created_at=old, updated_at=old))

    updated = store.update(NOTES, note.id, alice.id, {"title": "t"})

    assert updated.title == "t"
    assert updated.updated_at > old
    assert updated.created_at == old


def test_update_can_clear_a_field(store, alice):
    note = store.insert(NOTES, new_note(alice))
    updated = store.update(NOTES, note.id, alice.id, {"content": ""})
    assert updated.content == ""
    assert updated.title == "Groceries"


def test_update_rejects_unknown_and_immutable_fields(store, alice):
    note = store.insert(NOTES, new_note(alice))

    with pytest.raises(ValidationError):
        store.update(NOTES, note.id, alice.id, {"userId": "someone-else"})
    with pytest.raises(ValidationError):
        store.update(NOTES, note.id, alice.id, {"title": None})
    with pytest.raises(ValidationError):
        store.update(NOTES, note.id, alice.id, {"title": "x" * 201})
    with pytest.raises(ValidationError):
        store.update(USERS, alice.id, alice.id, {"email": "new@example.com"})


def test_update_missing_note_returns_none(store, alice):
    assert store.update(NOTES, "nope", alice.id, {"title": "x"}) is None


@pytest.mark.parametrize("title,content", [("", ""), ("   ", "\n\t"), ("", " ")])
def test_blank_notes_are_rejected(store, alice, title, content):
    with pytest.raises(ValidationError):
        store.insert(NOTES, NoteRecord(user_id=alice.id, title=title, content=content))
    assert store.list_by_owner(NOTES, alice.id) == []


@pytest.mark.parametrize("title,content", [("only title", ""), ("", "only content")])
def test_either_field_is_enough(store, alice, title, content):
    stored = store.insert(NOTES, NoteRecord(user_id=alice.id, title=title, content=content))
    assert store.get_by_id(NOTES, stored.id, alice.id) is not None


def test_oversized_fields_are_rejected(store, alice):
    with pytest.raises(ValidationError):
        store.insert(NOTES, {"userId": alice.id, "title": "x" * 201})
    with pytest.raises(ValidationError):
        store.insert(NOTES, {"userId": alice.id, "content": "x" * 10001})


def test_note_requires_existing_owner(store):
    with pytest.raises(ValidationError):
        store.insert(NOTES, NoteRecord(user_id="ghost", title="orphan"))


def test_delete_is_final(store, alice):
    note = store.insert(NOTES, new_note(alice))

    assert store.delete(NOTES, note.id, alice.id) is True
    assert store.get_by_id(NOTES, note.id, alice.id) is None
    assert store.delete(NOTES, note.id, alice.id) is False


def test_list_is_newest_first(store, alice):
    first = store.insert(NOTES, new_note(alice, title="first"))
    second = store.insert(NOTES, new_note(alice, title="second"))
    third = store.insert(NOTES, new_note(alice, title="third"))

    store.update(NOTES, first.id, alice.id, {"content": "bumped"})

    listed = [n.id for n in store.list_by_owner(NOTES, alice.id)]
    assert listed == [first.id, third.id, second.id]


def test_list_for_owner_without_notes_is_empty(store, alice):
    assert store.list_by_owner(NOTES, alice.id) == []
    assert store.list_by_owner(NOTES, "nobody") == []


def test_duplicate_ids_conflict(store, alice):
    note = store.insert(NOTES, new_note(alice))
    with pytest.raises(ConflictError):
        store.insert(NOTES, NoteRecord(id=note.id, user_id=alice.id, title="again"))


def test_duplicate_email_conflicts_case_insensitively(store, alice):
    with pytest.raises(ConflictError):
        store.insert(USERS, UserRecord(email="ALICE@Example.com", password_hash="h"))


def test_find_user_by_email(store, alice):
    assert store.find_user_by_email("Alice@EXAMPLE.com").id == alice.id
    assert store.find_user_by_email("carol@example.com") is None


def test_user_is_scoped_to_itself(store, alice, bob):
    assert store.get_by_id(USERS, alice.id, alice.id).email == "alice@example.com"
    assert store.get_by_id(USERS, alice.id, bob.id) is None
    assert [u.id for u in store.list_by_owner(USERS, alice.id)] == [alice.id]


def test_deleting_user_removes_their_notes(store, alice, bob):
    store.insert(NOTES, new_note(alice))
    kept = store.insert(NOTES, new_note(bob))

    assert store.delete(USERS, alice.id, alice.id) is True

    assert store.list_by_owner(NOTES, alice.id) == []
    assert [n.id for n in store.list_by_owner(NOTES, bob.id)] == [kept.id]


def test_unknown_collection_is_rejected(store, alice):
    with pytest.raises(ValidationError):
        store.list_by_owner("tags", alice.id)
    with pytest.raises(ValidationError):
        store.insert("tags", {"id": "x"})


def test_user_email_is_normalized(store):
    user = store.insert(USERS, UserRecord(email="  Dave@Example.COM ", password_hash="h"))
    assert user.email == "dave@example.com"


def test_special_use_email_domains_are_stored(store):
    user = store.insert(USERS, UserRecord(email="Ops@Intranet.LOCAL", password_hash="h"))

    assert store.find_user_by_email("ops@intranet.local").id == user.id
    assert store.get_by_id(USERS, user.id, user.id).email == "ops@intranet.local"
