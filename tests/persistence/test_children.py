import pytest

from blazeodm import Children, Document, DocumentManager, IdentifierError, Nodename, ParentDocument, StringField
from blazeodm.persistence import ChildrenCollection
from blazeodm.storage import MemoryNodeSession


class Shelf(Document):
    nodename = Nodename()
    parent = ParentDocument()
    label = StringField()
    items = Children(cascade="persist")


class Leaf(Document):
    nodename = Nodename()
    parent = ParentDocument()
    text = StringField()


def make_shelf(names=("a", "b", "c", "d")):
    dm = DocumentManager(MemoryNodeSession())
    shelf = Shelf(id="/shelf", items=[Leaf(nodename=name, text=name.upper()) for name in names])
    dm.persist(shelf)
    dm.flush()
    dm.clear()
    return dm, dm.find(Shelf, "/shelf")


def test_uninitialized_children_answer_count_and_membership():
    dm, shelf = make_shelf()
    items = shelf.items
    assert isinstance(items, ChildrenCollection)
    assert len(items) == 4
    assert "c" in items
    assert "z" not in items
    assert not items.is_initialized

    page = items.slice(1, 2)
    assert list(page) == ["b", "c"]
    assert page["b"].text == "B"
    assert not items.is_initialized

    assert list(items) == ["a", "b", "c", "d"]
    assert items.is_initialized
    assert items["b"] is page["b"]


def test_get_children_applies_name_filter():
    dm, shelf = make_shelf()
    children = dm.get_children(shelf, filter="a|c")
    assert list(children) == ["a", "c"]
    assert [child.text for child in children.values()] == ["A", "C"]


def test_assigning_reordered_children_schedules_minimal_reorder():
    dm, shelf = make_shelf()
    current = shelf.items
    shelf.items = {name: current[name] for name in ("b", "a", "d", "c")}

    uow = dm.unit_of_work
    uow.compute_change_sets()
    change = uow.get_document_change_set(shelf)
    assert change.child_orders == [["b", "a", "d", "c"]]
    assert len(change.reorderings[0]) == 2

    dm.flush()
    assert dm.session.get_node("/shelf").get_node_names() == ["b", "a", "d", "c"]


def test_deleting_a_key_removes_the_child():
    dm, shelf = make_shelf()
    removed = shelf.items["b"]
    del shelf.items["b"]
    dm.flush()

    assert dm.session.get_node("/shelf").get_node_names() == ["a", "c", "d"]
    assert dm.find(Leaf, "/shelf/b") is None
    assert not dm.contains(removed)


def test_adding_a_child_under_a_key():
    dm, shelf = make_shelf(("a",))
    leaf = Leaf(text="E")
    shelf.items["e"] = leaf
    dm.flush()

    assert leaf.id == "/shelf/e"
    assert leaf.nodename == "e"
    assert leaf.parent is shelf
    assert dm.session.get_node("/shelf").get_node_names() == ["a", "e"]


def test_conflicting_child_names_are_rejected():
    dm, shelf = make_shelf(("a",))
    shelf.items["other"] = Leaf(nodename="a", text="clash")
    with pytest.raises(IdentifierError):
        dm.flush()


def test_removed_child_leaves_loaded_collection():
    dm, shelf = make_shelf()
    leaf = shelf.items["c"]
    dm.remove(leaf)
    dm.flush()

    assert "c" not in shelf.items
    shelf.label = "touched"
    dm.flush()
    assert not dm.session.node_exists("/shelf/c")


@pytest.mark.parametrize(
    "source, target, before, expected",
    [
        ("d", "a", True, ["d", "a", "b", "c"]),
        ("a", "c", False, ["b", "c", "a", "d"]),
        ("a", "d", False, ["b", "c", "d", "a"]),
    ],
)
def test_reorder_places_child_relative_to_sibling(source, target, before, expected):
    dm, shelf = make_shelf()
    assert list(shelf.items) == ["a", "b", "c", "d"]
    dm.reorder(shelf, source, target, before)
    dm.flush()

    assert dm.session.get_node("/shelf").get_node_names() == expected
    assert not shelf.items.is_initialized
    assert list(shelf.items) == expected
