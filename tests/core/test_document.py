import pytest

from blazeodm.core import (
    BooleanField,
    Cascade,
    Children,
    Document,
    DocumentClassMapper,
    Generic,
    Id,
    IntegerField,
    Nodename,
    ParentDocument,
    ReferenceMany,
    ReferenceOne,
    Referrers,
    StringField,
    document_registry,
)
from blazeodm.errors import ClassMismatchError, InvalidDocumentError, MappingError
from blazeodm.storage import MemoryNodeSession


class Note(Document):
    title = StringField(max_length=20, nullable=False)
    views = IntegerField(default=0)
    published = BooleanField(default=False)
    tags = StringField(multivalue=True)


class Page(Document):
    nodename = Nodename()
    parent = ParentDocument()
    title = StringField()
    children = Children(cascade="persist")


class LinkedTopic(Document):
    related = ReferenceMany("LinkedTopic", strategy="hard", cascade=["persist", "remove"])
    mentions = Referrers("LinkedTopic", "related")

    class Meta:
        referenceable = True


class SpecialNote(Note):
    class Meta:
        node_type = "blaze:special"


def test_mapping_collects_fields_with_implicit_id_first():
    assert list(Note._meta.fields) == ["id", "title", "views", "published", "tags"]
    assert Note._meta.identifier == "id"
    assert Note._meta.field_mappings == ["title", "views", "published", "tags"]
    assert Note._meta.id_generator == "assigned"


def test_parent_and_nodename_default_to_parent_generator():
    mapping = Page._meta
    assert mapping.id_generator == "parent"
    assert mapping.nodename == "nodename"
    assert mapping.parent_mapping == "parent"
    assert mapping.children_mappings == ["children"]
    assert mapping.fields["children"].cascades(Cascade.PERSIST)
    assert not mapping.fields["children"].cascades(Cascade.REMOVE)


def test_string_targets_resolve_through_registry():
    related = LinkedTopic._meta.fields["related"]
    assert related.resolve_target() is LinkedTopic
    assert related.many is True
    assert LinkedTopic._meta.fields["mentions"].referencing_field() is related
    assert LinkedTopic._meta.reference_mappings == ["related"]
    assert LinkedTopic._meta.referrers_mappings == ["mentions"]
    assert document_registry.resolve("LinkedTopic") is LinkedTopic


def test_subclass_inherits_fields_and_options():
    assert list(SpecialNote._meta.fields) == list(Note._meta.fields)
    assert SpecialNote._meta.node_type == "blaze:special"
    assert SpecialNote._meta.type_tag.endswith(".SpecialNote")


def test_document_initializes_defaults_and_validates():
    note = Note(title="Hello")
    assert note.views == 0
    assert note.published is False
    assert note.id is None
    with pytest.raises(InvalidDocumentError):
        note.title = "x" * 21
    with pytest.raises(InvalidDocumentError):
        note.tags = "not-a-list"
    note.tags = ("a", "b")
    assert note.tags == ["a", "b"]
    with pytest.raises(TypeError):
        Note(missing=True)


def test_repr_shows_identifier():
    note = Note(id="/notes/one")
    assert repr(note) == "<Note /notes/one>"
    assert repr(Note()) == "<Note unsaved>"


def test_cascade_parse_accepts_keywords_and_flags():
    assert Cascade.parse(None) is Cascade.NONE
    assert Cascade.parse("all") == Cascade.ALL
    assert Cascade.parse(["persist", "refresh"]) == Cascade.PERSIST | Cascade.REFRESH
    assert Cascade.parse(Cascade.MERGE) == Cascade.MERGE
    with pytest.raises(MappingError):
        Cascade.parse("explode")


def test_duplicate_marker_fields_raise():
    with pytest.raises(MappingError):

        class TwoNames(Document):
            first = Nodename()
            second = Nodename()


def test_translated_field_requires_translator():
    with pytest.raises(MappingError):

        class Untranslated(Document):
            title = StringField(translated=True)


def test_field_named_id_must_be_identifier():
    with pytest.raises(MappingError):

        class Shadowed(Document):
            id = StringField()


def test_unknown_generator_and_reference_strategy_raise():
    with pytest.raises(MappingError):

        class Broken(Document):
            id = Id(strategy="sequence")

    with pytest.raises(MappingError):
        ReferenceOne(Note, strategy="soft")


def test_repository_generator_requires_generate_id():
    with pytest.raises(MappingError):

        class NoRepository(Document):
            class Meta:
                id_generator = "repository"


def test_class_mapper_round_trips_type_tag():
    session = MemoryNodeSession()
    node = session.get_root_node().add_node("note")
    mapper = DocumentClassMapper()
    mapper.write_metadata(node, SpecialNote)
    assert node.get_property_value("blaze:class") == SpecialNote._meta.type_tag
    assert Note._meta.type_tag in node.get_property_value("blaze:classparents")
    assert mapper.resolve_class(node) is SpecialNote
    assert mapper.resolve_class(node, Note) is SpecialNote
    with pytest.raises(ClassMismatchError):
        mapper.resolve_class(node, Page)
    assert DocumentClassMapper(validate_class_names=False).resolve_class(node, Page) is Page


def test_unknown_tags_fall_back_to_generic():
    session = MemoryNodeSession()
    node = session.get_root_node().add_node("plain")
    mapper = DocumentClassMapper()
    assert mapper.resolve_class(node) is Generic
    node.set_property("blaze:class", "gone.Class")
    assert mapper.resolve_class(node) is Generic
    mapper.write_metadata(node, Generic)
    assert node.get_property_value("blaze:class") == "gone.Class"


def test_document_base_carries_no_mapping():
    assert "_meta" not in Document.__dict__
    assert document_registry.resolve("Document") is None
    assert Document not in document_registry.documents()
