import pytest

from blazeodm.storage import (
    ItemExistsError,
    MemoryNodeSession,
    PathNotFoundError,
    PropertyType,
    ReferentialIntegrityError,
    StorageError,
    TransactionsUnsupportedError,
)


def make_tree():
    session = MemoryNodeSession()
    root = session.get_root_node()
    folder = root.add_node("folder")
    for name in ("a", "b", "c"):
        folder.add_node(name)
    session.save()
    return session


def test_root_node_exists_and_has_no_parent():
    session = MemoryNodeSession()
    root = session.get_root_node()
    assert root.path == "/"
    assert root.name == ""
    with pytest.raises(PathNotFoundError):
        root.get_parent()


def test_add_and_fetch_nodes_by_path_and_identifier():
    session = make_tree()
    node = session.get_node("/folder/b")
    assert node.name == "b"
    assert node.get_parent().path == "/folder"
    assert session.get_node_by_identifier(node.identifier) == node
    assert session.node_exists("folder/a")
    assert not session.node_exists("/folder/z")
    with pytest.raises(PathNotFoundError):
        session.get_node("/folder/z")
    with pytest.raises(ItemExistsError):
        session.get_node("/folder").add_node("a")


def test_batch_lookups_skip_missing_nodes():
    session = make_tree()
    found = session.get_nodes(["/folder/a", "folder/c", "/nope"])
    assert list(found) == ["/folder/a", "/folder/c"]
    identifier = found["/folder/a"].identifier
    assert list(session.get_nodes_by_identifier([identifier, "missing"])) == [identifier]


def test_properties_are_typed_and_none_removes():
    session = make_tree()
    node = session.get_node("/folder/a")
    node.set_property("title", "Hello")
    node.set_property("count", 3)
    node.set_property("tags", ["x", "y"])
    assert node.get_property_type("count") is PropertyType.LONG
    assert node.get_property_value("tags") == ["x", "y"]
    assert node.get_properties("t") == {"title": "Hello", "tags": ["x", "y"]}
    node.set_property("title", None)
    assert not node.has_property("title")
    assert node.get_property_value("title", "default") == "default"


def test_children_are_ordered_and_filterable():
    session = make_tree()
    folder = session.get_node("/folder")
    folder.order_before("c", "a")
    assert folder.get_node_names() == ["c", "a", "b"]
    folder.order_before("c", None)
    assert folder.get_node_names() == ["a", "b", "c"]
    assert folder.get_node_names("a|c") == ["a", "c"]


def test_move_keeps_identifier_and_rejects_conflicts():
    session = make_tree()
    node = session.get_node("/folder/a")
    session.get_root_node().add_node("target")
    session.move("/folder/a", "/target/renamed")
    assert node.path == "/target/renamed"
    assert session.get_node("/target/renamed").identifier == node.identifier
    with pytest.raises(ItemExistsError):
        session.move("/folder/b", "/folder/c")
    with pytest.raises(StorageError):
        session.move("/folder", "/folder/b/inner")


def test_refresh_discards_unsaved_changes():
    session = make_tree()
    session.get_node("/folder").add_node("draft")
    assert session.has_pending_changes()
    session.refresh(keep_changes=True)
    assert session.node_exists("/folder/draft")
    session.refresh()
    assert not session.node_exists("/folder/draft")


def test_remove_drops_subtree():
    session = make_tree()
    session.get_node("/folder").remove()
    assert not session.node_exists("/folder/a")
    with pytest.raises(StorageError):
        session.get_root_node().remove()


def test_hard_references_are_checked_on_save():
    session = make_tree()
    a = session.get_node("/folder/a")
    b = session.get_node("/folder/b")
    a.set_property("link", b.identifier, PropertyType.REFERENCE)
    a.set_property("soft", b.identifier, PropertyType.WEAKREFERENCE)
    assert b.get_referrers() == [a]
    assert b.get_referrers("soft", weak=True) == [a]
    session.save()
    b.remove()
    with pytest.raises(ReferentialIntegrityError):
        session.save()


def test_transaction_rollback_restores_persisted_state():
    session = make_tree()
    session.begin_transaction()
    assert session.in_transaction
    session.get_node("/folder").add_node("temp")
    session.save()
    session.rollback_transaction()
    assert not session.in_transaction
    assert not session.node_exists("/folder/temp")


def test_transactions_can_be_disabled():
    session = MemoryNodeSession(supports_transactions=False)
    with pytest.raises(TransactionsUnsupportedError):
        session.begin_transaction()
