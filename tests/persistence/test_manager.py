import logging

import pytest

from blazeodm import (
    Child,
    Children,
    Configuration,
    Document,
    DocumentManager,
    DocumentManagerClosedError,
    DocumentState,
    IdentifierError,
    IllegalMoveError,
    InvalidDocumentError,
    Nodename,
    ParentDocument,
    ReferenceOne,
    StringField,
    hooks,
)
from blazeodm.persistence import proxy
from blazeodm.storage import MemoryNodeSession


class Folder(Document):
    nodename = Nodename()
    parent = ParentDocument()
    title = StringField()
    children = Children(cascade="persist")


class Article(Document):
    nodename = Nodename()
    parent = ParentDocument()
    title = StringField(nullable=False)
    tags = StringField(multivalue=True)


class Memo(Document):
    text = StringField()


class Section(Document):
    nodename = Nodename()
    parent = ParentDocument()
    summary = Child("summary", cascade="persist")


class SelfLinked(Document):
    label = StringField()
    link = ReferenceOne("SelfLinked", strategy="path")


def make_manager(**kwargs):
    return DocumentManager(MemoryNodeSession(), **kwargs)


def make_folder(dm, id="/parent"):
    folder = Folder(id=id, title="Parent")
    dm.persist(folder)
    dm.flush()
    return folder


def test_persist_flush_remove_round_trip():
    dm = make_manager()
    folder = make_folder(dm)
    article = Article(nodename="D", parent=folder, title="Hello")
    assert dm.get_document_state(article) is DocumentState.NEW

    dm.persist(article)
    dm.flush()

    assert dm.get_document_state(article) is DocumentState.MANAGED
    assert article.id == "/parent/D"
    assert dm.get_document_id(article) == "/parent/D"
    node = dm.session.get_node("/parent/D")
    assert node.get_property_value("blaze:class") == Article._meta.type_tag
    assert node.get_property_value("title") == "Hello"
    assert node.is_node_type("blaze:managed")
    assert dm.session.get_node("/parent").get_node_names() == ["D"]

    dm.remove(article)
    assert dm.get_document_state(article) is DocumentState.REMOVED
    assert not dm.contains(article)
    dm.flush()

    assert dm.find(Article, "/parent/D") is None
    assert dm.unit_of_work.get_document_by_id("/parent/D") is None
    assert not dm.session.node_exists("/parent/D")


def test_find_returns_the_same_instance():
    dm = make_manager()
    make_folder(dm)
    dm.clear()

    first = dm.find(Folder, "/parent")
    second = dm.find(Folder, "parent")
    assert first is second
    assert first.title == "Parent"
    identifier = dm.get_node_for_document(first).identifier
    assert dm.find(None, identifier) is first
    assert dm.find_many(Folder, ["/missing", "/parent"]) == [first]


def test_find_misses_return_none():
    dm = make_manager()
    folder = make_folder(dm)
    article = Article(nodename="a", parent=folder, title="A")
    dm.persist(article)
    dm.flush()

    assert dm.find(Article, "/nowhere") is None
    assert dm.find(Folder, "/parent/a") is None
    dm.clear()
    assert dm.find(Folder, "/parent/a") is None
    assert isinstance(dm.find(None, "/parent/a"), Article)


def test_persist_twice_inserts_once():
    dm = make_manager()
    memo = Memo(id="/once", text="x")
    dm.persist(memo)
    dm.persist(memo)
    dm.flush()
    assert dm.session.get_root_node().get_node_names() == ["once"]


def test_cascade_persist_inserts_parent_before_children():
    inserted = []
    hooks.register("post_persist", lambda document, **context: inserted.append(document.id))
    dm = make_manager()
    folder = Folder(
        id="/parent",
        children=[Article(nodename="a", title="A"), Article(nodename="b", title="B")],
    )
    dm.persist(folder)
    dm.flush()

    assert inserted == ["/parent", "/parent/a", "/parent/b"]
    assert dm.session.get_node("/parent").get_node_names() == ["a", "b"]
    assert list(folder.children) == ["a", "b"]
    assert folder.children["a"].parent is folder


def test_child_persisted_before_its_new_parent():
    dm = make_manager()
    article = Article(nodename="x", parent=Folder(id="/late"), title="X")
    dm.persist(article)
    dm.flush()
    assert article.id == "/late/x"
    assert dm.session.node_exists("/late/x")


def test_replacing_single_child_by_assignment_fails_before_writing():
    dm = make_manager()
    section = Section(id="/section", summary=Article(title="First"))
    dm.persist(section)
    dm.flush()
    assert section.summary.id == "/section/summary"

    section.summary = Article(title="Second")
    with pytest.raises(IllegalMoveError):
        dm.flush()
    assert not dm.closed
    assert dm.session.get_node("/section/summary").get_property_value("title") == "First"


def test_assigning_none_removes_single_child():
    dm = make_manager()
    section = Section(id="/section", summary=Article(title="First"))
    dm.persist(section)
    dm.flush()
    old = section.summary

    section.summary = None
    dm.flush()
    assert not dm.session.node_exists("/section/summary")
    assert not dm.contains(old)


def test_change_set_is_empty_after_flush():
    dm = make_manager()
    folder = make_folder(dm)
    article = Article(nodename="a", parent=folder, title="Before")
    dm.persist(article)
    dm.flush()

    article.title = "After"
    uow = dm.unit_of_work
    uow.compute_change_sets()
    assert uow.get_document_change_set(article).fields == {"title": ("Before", "After")}
    assert uow.get_scheduled_updates() == [article]
    dm.flush()
    assert dm.session.get_node("/parent/a").get_property_value("title") == "After"

    uow.compute_change_sets()
    assert uow.get_document_change_set(article) is None
    assert uow.get_scheduled_updates() == []


def test_immutable_id_cannot_change():
    dm = make_manager()
    memo = Memo(id="/memo")
    dm.persist(memo)
    dm.flush()

    memo.id = "/elsewhere"
    with pytest.raises(IdentifierError):
        dm.flush()
    assert not dm.closed
    memo.id = "/memo"
    dm.flush()


def test_move_rewrites_loaded_descendants():
    dm = make_manager()
    a = Folder(id="/a")
    b = Folder(nodename="b", parent=a)
    c = Article(nodename="c", parent=b, title="C")
    x = Folder(id="/x")
    for document in (a, b, c, x):
        dm.persist(document)
    dm.flush()

    dm.move(b, "/x/y")
    dm.flush()

    assert b.id == "/x/y"
    assert b.nodename == "y"
    assert b.parent is x
    assert c.id == "/x/y/c"
    uow = dm.unit_of_work
    assert uow.get_document_by_id("/a/b") is None
    assert uow.get_document_by_id("/a/b/c") is None
    assert uow.get_document_by_id("/x/y/c") is c
    assert dm.session.node_exists("/x/y/c")
    assert not dm.session.node_exists("/a/b")


def test_assignment_moves_and_renames():
    dm = make_manager()
    folder = make_folder(dm)
    other = make_folder(dm, "/other")
    article = Article(nodename="a", parent=folder, title="A")
    dm.persist(article)
    dm.flush()

    article.parent = other
    dm.flush()
    assert article.id == "/other/a"

    article.nodename = "renamed"
    dm.flush()
    assert article.id == "/other/renamed"
    assert dm.session.node_exists("/other/renamed")


def test_failed_save_closes_the_manager(monkeypatch, caplog):
    dm = make_manager()

    def broken_save():
        raise RuntimeError("disk full")

    monkeypatch.setattr(dm.session, "save", broken_save)
    dm.persist(Memo(id="/memo", text="x"))
    with caplog.at_level(logging.ERROR, logger="blazeodm"):
        with pytest.raises(RuntimeError, match="disk full"):
            dm.flush()

    assert dm.closed
    assert "Commit failed" in caplog.text
    assert not dm.session.in_transaction
    assert not dm.session.node_exists("/memo")
    with pytest.raises(DocumentManagerClosedError):
        dm.persist(Memo(id="/other"))
    with pytest.raises(DocumentManagerClosedError):
        dm.find(Memo, "/memo")


def test_non_nullable_field_is_required_on_insert():
    dm = make_manager()
    folder = make_folder(dm)
    dm.persist(Article(nodename="untitled", parent=folder))
    with pytest.raises(InvalidDocumentError):
        dm.flush()
    assert not dm.session.node_exists("/parent/untitled")


def test_remove_then_persist_keeps_the_document():
    dm = make_manager()
    memo = Memo(id="/memo", text="x")
    dm.persist(memo)
    dm.flush()

    dm.remove(memo)
    dm.persist(memo)
    dm.flush()
    assert dm.contains(memo)
    assert dm.session.node_exists("/memo")

    draft = Memo(id="/draft")
    dm.persist(draft)
    dm.remove(draft)
    dm.flush()
    assert not dm.session.node_exists("/draft")


def test_persisting_detached_or_foreign_objects_fails():
    dm = make_manager()
    memo = Memo(id="/memo")
    dm.persist(memo)
    dm.flush()
    dm.clear()

    assert dm.get_document_state(memo) is DocumentState.DETACHED
    with pytest.raises(InvalidDocumentError):
        dm.persist(memo)
    with pytest.raises(InvalidDocumentError):
        dm.persist("not a document")


def test_flush_restricted_to_one_document():
    dm = make_manager()
    first, second = Memo(id="/first", text="1"), Memo(id="/second", text="1")
    dm.persist(first)
    dm.persist(second)
    dm.flush()

    first.text = "2"
    second.text = "2"
    dm.flush(first)
    assert dm.session.get_node("/first").get_property_value("text") == "2"
    assert dm.session.get_node("/second").get_property_value("text") == "1"
    dm.flush()
    assert dm.session.get_node("/second").get_property_value("text") == "2"


def test_get_reference_loads_lazily():
    dm = make_manager()
    folder = make_folder(dm)
    dm.persist(Article(nodename="a", parent=folder, title="Lazy"))
    dm.flush()
    dm.clear()

    reference = dm.get_reference(Article, "/parent/a")
    assert not proxy.is_initialized(reference)
    assert reference.title == "Lazy"
    assert proxy.is_initialized(reference)
    assert dm.find(Article, "/parent/a") is reference


def test_manager_as_context_manager_flushes_and_closes():
    session = MemoryNodeSession()
    with DocumentManager(session) as dm:
        dm.persist(Memo(id="/kept"))
    assert dm.closed
    assert session.node_exists("/kept")

    with pytest.raises(RuntimeError):
        with DocumentManager(session) as dm:
            dm.persist(Memo(id="/skipped"))
            raise RuntimeError("abort")
    assert not session.node_exists("/skipped")


def test_write_metadata_can_be_disabled():
    dm = make_manager(config=Configuration(write_metadata=False))
    dm.persist(Memo(id="/plain"))
    dm.flush()
    assert not dm.session.get_node("/plain").has_property("blaze:class")


def test_sqlite_round_trip(tmp_path):
    dsn = f"sqlite:///{tmp_path / 'documents.db'}"
    dm = DocumentManager.from_config(dsn)
    folder = Folder(id="/parent", title="Parent")
    dm.persist(folder)
    dm.persist(Article(nodename="a", parent=folder, title="Stored", tags=["x", "y"]))
    dm.flush()
    dm.close()
    dm.session.close()

    reopened = DocumentManager.from_config(dsn)
    article = reopened.find(Article, "/parent/a")
    assert article.title == "Stored"
    assert article.tags == ["x", "y"]
    assert article.parent is reopened.find(Folder, "/parent")
    assert list(article.parent.children) == ["a"]
    reopened.session.close()


def test_generated_id_from_parent_and_nodename():
    assert Article._meta.id_generator == "parent"
    dm = make_manager()
    folder = make_folder(dm)
    article = Article(nodename="D", parent=folder, title="Generated")
    dm.persist(article)
    dm.flush()
    assert article.id == "/parent/D"
    assert dm.find(Article, "/parent/D") is article


def test_self_reference_loads_one_instance():
    dm = make_manager()
    linked = SelfLinked(id="/self", label="loop")
    linked.link = linked
    dm.persist(linked)
    dm.flush()
    assert dm.session.get_node("/self").get_property_value("link") == "/self"
    dm.clear()

    again = dm.find(SelfLinked, "/self")
    assert again.link is again
    assert dm.unit_of_work.get_document_by_id("/self") is again
    assert dm.find(SelfLinked, "/self") is again


def test_moving_an_unpersisted_document_leaves_it_untouched():
    dm = make_manager()
    memo = Memo(id="/draft", text="x")
    with pytest.raises(InvalidDocumentError):
        dm.move(memo, "/elsewhere")

    dm.persist(memo)
    dm.flush()
    assert dm.session.node_exists("/draft")
    assert not dm.session.node_exists("/elsewhere")
