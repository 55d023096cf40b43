import pytest

from blazeodm import (
    Configuration,
    Document,
    DocumentManager,
    LocaleChooser,
    StringField,
    events,
    hooks,
)
from blazeodm.storage import MemoryNodeSession


class Memo(Document):
    text = StringField()


class UrgentMemo(Memo):
    pass


class Phrase(Document):
    text = StringField(translated=True)

    class Meta:
        translator = "attribute"


def record(log, event):
    def handler(document, **context):
        log.append((event, document.id if document is not None else None))

    hooks.register(event, handler)


def test_persist_and_flush_fire_in_order():
    log = []
    for event in (events.PRE_PERSIST, events.POST_PERSIST, events.PRE_FLUSH, events.ON_FLUSH, events.POST_FLUSH, events.END_FLUSH):
        record(log, event)

    dm = DocumentManager(MemoryNodeSession())
    dm.persist(Memo(id="/memo", text="hi"))
    dm.flush()

    assert log == [
        ("pre_persist", "/memo"),
        ("pre_flush", None),
        ("on_flush", None),
        ("post_persist", "/memo"),
        ("post_flush", None),
        ("end_flush", None),
    ]


def test_update_events_receive_change_set_and_manager():
    seen = []

    def before(document, manager, change_set, **context):
        seen.append(("pre_update", manager, change_set.fields["text"]))

    hooks.register(events.PRE_UPDATE, before)
    hooks.register(events.POST_UPDATE, lambda document, **context: seen.append(("post_update", document.text)))

    dm = DocumentManager(MemoryNodeSession())
    memo = Memo(id="/memo", text="old")
    dm.persist(memo)
    dm.flush()
    memo.text = "new"
    dm.flush()

    assert seen == [("pre_update", dm, ("old", "new")), ("post_update", "new")]


def test_changes_made_in_pre_update_are_written():
    def shout(document, **context):
        document.text = document.text.upper()

    Memo.register_hook(events.PRE_UPDATE, shout)
    dm = DocumentManager(MemoryNodeSession())
    memo = Memo(id="/memo", text="quiet")
    dm.persist(memo)
    dm.flush()
    memo.text = "shout"
    dm.flush()

    assert dm.session.get_node("/memo").get_property_value("text") == "SHOUT"


def test_remove_events_fire_at_remove_and_flush():
    log = []
    record(log, events.PRE_REMOVE)
    record(log, events.POST_REMOVE)

    dm = DocumentManager(MemoryNodeSession())
    memo = Memo(id="/memo")
    dm.persist(memo)
    dm.flush()
    dm.remove(memo)
    assert log == [("pre_remove", "/memo")]
    dm.flush()
    assert log == [("pre_remove", "/memo"), ("post_remove", "/memo")]


def test_move_events_carry_source_and_target():
    moves = []
    hooks.register(events.PRE_MOVE, lambda document, source, target, **context: moves.append(("pre", source, target)))
    hooks.register(events.POST_MOVE, lambda document, source, target, **context: moves.append(("post", document.id)))

    dm = DocumentManager(MemoryNodeSession())
    memo = Memo(id="/memo")
    dm.persist(memo)
    dm.flush()
    dm.move(memo, "/moved")
    dm.flush()

    assert moves == [("pre", "/memo", "/moved"), ("post", "/moved")]


def test_class_hooks_fire_for_subclasses_only():
    fired = []
    Memo.register_hook(events.PRE_PERSIST, lambda document, **context: fired.append(type(document).__name__))

    dm = DocumentManager(MemoryNodeSession())
    dm.persist(UrgentMemo(id="/urgent"))
    dm.persist(Phrase(id="/phrase"))

    assert fired == ["UrgentMemo"]


def test_unknown_event_is_rejected():
    with pytest.raises(ValueError):
        hooks.register("before_save", lambda document, **context: None)


def test_clear_and_load_events():
    log = []
    record(log, events.ON_CLEAR)
    record(log, events.POST_LOAD)

    dm = DocumentManager(MemoryNodeSession())
    dm.persist(Memo(id="/memo"))
    dm.flush()
    dm.clear()
    dm.find(Memo, "/memo")

    assert log == [("on_clear", None), ("post_load", "/memo")]


def test_translation_events_receive_locale():
    created = []
    hooks.register(events.PRE_CREATE_TRANSLATION, lambda document, locale, **context: created.append(locale))

    chooser = LocaleChooser({"en": ["de"], "de": ["en"]}, "en")
    dm = DocumentManager(MemoryNodeSession(), Configuration(locale_chooser=chooser))
    phrase = Phrase(id="/phrase", text="Hello")
    dm.persist(phrase)
    dm.flush()
    phrase.text = "Hallo"
    dm.bind_translation(phrase, "de")

    assert created == ["en", "de"]
