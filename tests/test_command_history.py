import pytest

from service_catalog.command_history import CommandError, CommandHistory, CompositeCommand, SnapshotCommand
from service_catalog.form_store import FormStore


@pytest.fixture
def store(sample_wire, id_factory):
    return FormStore.from_wire(sample_wire, id_factory=id_factory)


def _set_slug(slug):
    return SnapshotCommand(f"slug {slug}", lambda store: store.update_form(slug=slug))


def test_execute_undo_redo(store):
    history = CommandHistory(store)
    assert history.execute(_set_slug("first")) is True
    assert history.execute(_set_slug("second")) is True
    assert history.last_command.description == "slug second"

    assert history.undo() is True
    assert store.document.slug == "first"
    assert history.undo() is True
    assert store.document.slug == "salon-booking"
    assert history.undo() is False
    assert history.last_command is None

    assert history.redo() is True
    assert store.document.slug == "first"
    assert (history.can_undo, history.can_redo) == (True, True)


def test_new_command_drops_redo_branch(store):
    history = CommandHistory(store)
    history.execute(_set_slug("first"))
    history.execute(_set_slug("second"))
    history.undo()
    history.execute(_set_slug("third"))
    assert history.size == 2
    assert history.can_redo is False
    history.undo()
    assert store.document.slug == "first"


def test_history_is_bounded(store):
    history = CommandHistory(store, max_size=2)
    for slug in ("one", "two", "three"):
        history.execute(_set_slug(slug))
    assert history.size == 2
    assert history.undo() and history.undo()
    assert history.can_undo is False
    assert store.document.slug == "one"


def test_refused_command_is_not_recorded(store):
    history = CommandHistory(store)
    command = SnapshotCommand("never", lambda store: store.update_form(slug="never"),
                              precondition=lambda store: False)
    assert history.execute(command) is False
    assert history.size == 0
    assert store.document.slug == "salon-booking"


def test_failing_command_propagates(store):
    history = CommandHistory(store)
    with pytest.raises(KeyError):
        history.execute(SnapshotCommand("bad", lambda store: store.update_form(colour="red")))
    assert history.size == 0
    assert history.is_executing is False


def test_composite_is_one_step(store):
    history = CommandHistory(store)
    composite = CompositeCommand("rebrand", [
        _set_slug("rebranded"),
        SnapshotCommand("dark", lambda store: store.update_form(theme="dark")),
    ])
    history.execute(composite)
    assert (store.document.slug, store.document.theme) == ("rebranded", "dark")
    history.undo()
    assert (store.document.slug, store.document.theme) == ("salon-booking", "light")
    history.redo()
    assert (store.document.slug, store.document.theme) == ("rebranded", "dark")
    assert CompositeCommand("empty").can_execute(store) is False


def test_undo_before_execute_is_an_error(store):
    with pytest.raises(CommandError):
        _set_slug("x").undo(store)
