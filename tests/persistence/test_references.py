import pytest

from blazeodm import (
    BlazeODMError,
    CascadeError,
    Document,
    DocumentManager,
    InvalidDocumentError,
    Nodename,
    ParentDocument,
    ReferenceMany,
    ReferenceOne,
    Referrers,
    StringField,
)
from blazeodm.persistence import ReferenceManyCollection
from blazeodm.storage import MemoryNodeSession, PropertyType, ReferentialIntegrityError


class Topic(Document):
    nodename = Nodename()
    parent = ParentDocument()
    label = StringField()

    class Meta:
        referenceable = True


class Scrap(Document):
    note = StringField()


class Entry(Document):
    nodename = Nodename()
    parent = ParentDocument()
    title = StringField()
    main_topic = ReferenceOne(Topic, strategy="hard")
    topics = ReferenceMany(Topic, cascade=["persist", "remove"])
    scrap = ReferenceOne(Scrap, strategy="hard")
    source = ReferenceOne(strategy="path")


class Writer(Document):
    name = StringField()
    entries = Referrers("WrittenEntry", "writer")

    class Meta:
        referenceable = True


class WrittenEntry(Document):
    title = StringField()
    writer = ReferenceOne("Writer")


def make_manager():
    dm = DocumentManager(MemoryNodeSession())
    root = Scrap(id="/topics")
    dm.persist(root)
    dm.flush()
    return dm


def topic_folder(dm):
    return dm.find(None, "/topics")


def test_cascade_persisted_references_are_written_after_inserts():
    dm = make_manager()
    folder = topic_folder(dm)
    python = Topic(nodename="python", parent=folder, label="Python")
    rust = Topic(nodename="rust", parent=folder, label="Rust")
    entry = Entry(id="/entry", title="Hello", topics=[python, rust])
    dm.persist(entry)
    dm.flush()

    node = dm.session.get_node("/entry")
    expected = [dm.get_node_for_document(python).identifier, dm.get_node_for_document(rust).identifier]
    assert node.get_property_value("topics") == expected
    assert node.get_property_type("topics") is PropertyType.WEAKREFERENCE
    assert dm.get_node_for_document(python).is_node_type("mix:referenceable")

    dm.clear()
    loaded = dm.find(Entry, "/entry")
    assert isinstance(loaded.topics, ReferenceManyCollection)
    assert len(loaded.topics) == 2
    assert not loaded.topics.is_initialized
    assert [topic.label for topic in loaded.topics] == ["Python", "Rust"]


def test_new_reference_without_cascade_persist_fails():
    dm = make_manager()
    entry = Entry(id="/entry", main_topic=Topic(nodename="orphan", parent=topic_folder(dm)))
    dm.persist(entry)
    with pytest.raises(CascadeError):
        dm.flush()
    assert not dm.closed


def test_hard_reference_to_non_referenceable_document_fails():
    dm = make_manager()
    scrap = Scrap(id="/scrap")
    dm.persist(scrap)
    dm.persist(Entry(id="/entry", scrap=scrap))
    with pytest.raises(InvalidDocumentError):
        dm.flush()


def test_hard_reference_protects_target_from_removal():
    dm = make_manager()
    topic = Topic(nodename="kept", parent=topic_folder(dm))
    dm.persist(topic)
    entry = Entry(id="/entry", main_topic=topic)
    dm.persist(entry)
    dm.flush()
    assert dm.session.get_node("/entry").get_property_type("main_topic") is PropertyType.REFERENCE

    dm.remove(topic)
    with pytest.raises(ReferentialIntegrityError):
        dm.flush()
    assert dm.closed


def test_clearing_a_reference_removes_the_property():
    dm = make_manager()
    topic = Topic(nodename="t", parent=topic_folder(dm))
    dm.persist(topic)
    entry = Entry(id="/entry", main_topic=topic)
    dm.persist(entry)
    dm.flush()

    entry.main_topic = None
    dm.flush()
    assert not dm.session.get_node("/entry").has_property("main_topic")


def test_path_reference_round_trip():
    dm = make_manager()
    scrap = Scrap(id="/elsewhere", note="target")
    dm.persist(scrap)
    dm.persist(Entry(id="/entry", source=scrap))
    dm.flush()
    assert dm.session.get_node("/entry").get_property_value("source") == "/elsewhere"

    dm.clear()
    entry = dm.find(Entry, "/entry")
    assert entry.source.note == "target"
    assert entry.source is dm.find(Scrap, "/elsewhere")


def test_removing_from_cascading_collection_removes_orphan():
    dm = make_manager()
    folder = topic_folder(dm)
    first = Topic(nodename="first", parent=folder)
    second = Topic(nodename="second", parent=folder)
    dm.persist(Entry(id="/entry", topics=[first, second]))
    dm.flush()
    dm.clear()

    entry = dm.find(Entry, "/entry")
    doomed = entry.topics[0]
    entry.topics.remove(doomed)
    dm.flush()

    assert dm.find(Topic, "/topics/first") is None
    assert dm.find(Topic, "/topics/second") is not None
    assert dm.session.get_node("/entry").get_property_value("topics") == [
        dm.session.get_node("/topics/second").identifier
    ]


def test_cascade_remove_follows_references():
    dm = make_manager()
    topic = Topic(nodename="only", parent=topic_folder(dm))
    entry = Entry(id="/entry", topics=[topic])
    dm.persist(entry)
    dm.flush()

    dm.remove(entry)
    dm.flush()
    assert not dm.session.node_exists("/topics/only")


def test_referrers_are_loaded_from_the_store():
    dm = make_manager()
    writer = Writer(id="/writer", name="Ann")
    dm.persist(writer)
    dm.persist(WrittenEntry(id="/post", title="First", writer=writer))
    dm.flush()
    dm.clear()

    writer = dm.find(Writer, "/writer")
    assert len(writer.entries) == 1
    post = dm.find(WrittenEntry, "/post")
    assert list(writer.entries) == [post]
    assert post.writer is writer
    assert list(dm.get_referrers(writer)) == [post]
    assert list(dm.get_referrers(writer, type="hard")) == []


def test_adding_a_referrer_points_it_at_the_owner():
    dm = make_manager()
    writer = Writer(id="/writer", name="Ann")
    dm.persist(writer)
    dm.flush()
    dm.clear()

    writer = dm.find(Writer, "/writer")
    post = WrittenEntry(id="/post", title="Second")
    dm.persist(post)
    writer.entries.append(post)
    dm.flush()

    assert post.writer is writer
    stored = dm.session.get_node("/post").get_property_value("writer")
    assert stored == dm.get_node_for_document(writer).identifier


def test_conflicting_referrer_settings_fail():
    dm = make_manager()
    writer = Writer(id="/writer")
    other = Writer(id="/other")
    post = WrittenEntry(id="/post", writer=other)
    for document in (writer, other, post):
        dm.persist(document)
    dm.flush()

    writer.entries.append(post)
    with pytest.raises(BlazeODMError):
        dm.flush()
