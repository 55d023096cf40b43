from blazeodm import Document, StringField
from blazeodm.persistence import DocumentState, IdentityMap


class Entry(Document):
    title = StringField()


def test_register_and_lookup_return_the_same_instance():
    identity_map = IdentityMap()
    entry = Entry()
    handle = identity_map.register(entry, "/entries/one")

    assert identity_map.lookup("/entries/one") is entry
    assert identity_map.document(handle) is entry
    assert identity_map.id_of(handle) == "/entries/one"
    assert identity_map.state_of(handle) is DocumentState.MANAGED
    assert entry in identity_map
    assert identity_map.register(entry, "/entries/one") == handle
    assert len(identity_map) == 1


def test_lookup_miss_returns_none():
    identity_map = IdentityMap()
    assert identity_map.lookup("/missing") is None
    assert Entry() not in identity_map


def test_reregistering_under_a_new_id_drops_the_old_key():
    identity_map = IdentityMap()
    entry = Entry()
    handle = identity_map.register(entry, "/old")
    identity_map.register(entry, "/new")

    assert identity_map.lookup("/old") is None
    assert identity_map.lookup("/new") is entry
    assert identity_map.ids() == [("/new", handle)]


def test_rekey_and_unregister():
    identity_map = IdentityMap()
    entry = Entry()
    handle = identity_map.register(entry, "/a/b")
    identity_map.rekey(handle, "/x/y")

    assert identity_map.lookup("/a/b") is None
    assert identity_map.lookup("/x/y") is entry

    identity_map.set_state(handle, DocumentState.REMOVED)
    assert identity_map.state_of(handle) is DocumentState.REMOVED
    identity_map.unregister(handle)
    assert not identity_map.is_tracked(handle)
    assert identity_map.lookup("/x/y") is None
    assert entry not in identity_map


def test_handles_are_scoped_to_their_arena():
    first, second = IdentityMap(), IdentityMap()
    entry = Entry()
    first_handle = first.register(entry, "/a")
    second_handle = second.register(entry, "/b")

    second.unregister(second_handle)
    assert entry in first
    assert entry not in second
    assert first.id_of(first_handle) == "/a"
    assert first.handle(entry) == first_handle
