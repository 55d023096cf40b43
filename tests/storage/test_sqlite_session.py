from datetime import datetime, timezone

from blazeodm.storage import PropertyType, SQLiteNodeSession


def test_saved_tree_survives_reopening(tmp_path):
    path = str(tmp_path / "nodes.db")
    session = SQLiteNodeSession(path)
    root = session.get_root_node()
    folder = root.add_node("folder")
    first = folder.add_node("first")
    folder.add_node("second")
    folder.order_before("second", "first")
    first.set_property("created", datetime(2024, 1, 2, tzinfo=timezone.utc), PropertyType.DATE)
    first.set_property("tags", ["a", "b"])
    identifier = first.identifier
    session.save()
    session.close()

    reopened = SQLiteNodeSession(path)
    folder = reopened.get_node("/folder")
    assert folder.get_node_names() == ["second", "first"]
    first = reopened.get_node_by_identifier(identifier)
    assert first.path == "/folder/first"
    assert first.get_property_value("created") == datetime(2024, 1, 2, tzinfo=timezone.utc)
    assert first.get_property_value("tags") == ["a", "b"]
    reopened.close()


def test_unsaved_changes_are_not_written(tmp_path):
    path = str(tmp_path / "unsaved.db")
    session = SQLiteNodeSession(path)
    session.get_root_node().add_node("draft")
    session.close()

    reopened = SQLiteNodeSession(path)
    assert not reopened.node_exists("/draft")
    reopened.close()


def test_rollback_discards_saved_changes(tmp_path):
    path = str(tmp_path / "rollback.db")
    session = SQLiteNodeSession(path)
    session.get_root_node().add_node("kept")
    session.save()

    session.begin_transaction()
    session.get_root_node().add_node("discarded")
    session.save()
    session.rollback_transaction()

    assert session.node_exists("/kept")
    assert not session.node_exists("/discarded")
    session.close()
