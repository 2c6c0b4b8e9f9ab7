# service_catalog/command_history.py
"""
Undo/redo over a FormStore.

A command remembers the document before and after it ran, so undo and redo
are whole-document restores. CommandHistory keeps the executed commands and a
cursor into them; executing a new command drops everything that could have
been redone, and only the last `max_size` commands are kept.
"""
import logging
import time
from typing import Any, Callable, List, Optional

from service_catalog.config import COMMAND_HISTORY_LIMIT
from service_catalog.form_store import FormStore
from service_catalog.migration import new_id
from service_catalog.models import NormalizedDocument

logger = logging.getLogger("catalog_editor")


class CommandError(RuntimeError):
    pass


class Command:
    description = "command"

    def __init__(self):
        self.id = f"cmd-{new_id()}"
        self.timestamp = time.time()

    def can_execute(self, store: FormStore) -> bool:
        return True

    def execute(self, store: FormStore) -> Any:
        raise NotImplementedError

    def undo(self, store: FormStore) -> None:
        raise NotImplementedError

    def redo(self, store: FormStore) -> None:
        self.execute(store)


class SnapshotCommand(Command):
    """Runs `mutation(store)` and restores the before/after documents on undo/redo."""

    def __init__(
        self,
        description: str,
        mutation: Callable[[FormStore], Any],
        precondition: Optional[Callable[[FormStore], bool]] = None,
    ):
        super().__init__()
        self.description = description
        self.mutation = mutation
        self.precondition = precondition
        self.result: Any = None
        self._before: Optional[NormalizedDocument] = None
        self._after: Optional[NormalizedDocument] = None

    def can_execute(self, store: FormStore) -> bool:
        return self.precondition is None or bool(self.precondition(store))

    def execute(self, store: FormStore) -> Any:
        self._before = store.snapshot()
        self.result = self.mutation(store)
        self._after = store.snapshot()
        return self.result

    def undo(self, store: FormStore) -> None:
        if self._before is None:
            raise CommandError(f"{self.description} was never executed")
        store.load(self._before, action="undo", dirty=True)

    def redo(self, store: FormStore) -> None:
        if self._after is None:
            raise CommandError(f"{self.description} was never executed")
        store.load(self._after, action="redo", dirty=True)


class CompositeCommand(Command):
    """Several commands undone and redone as one step."""

    def __init__(self, description: str, commands: Optional[List[Command]] = None):
        super().__init__()
        self.description = description
        self.commands: List[Command] = list(commands or [])

    def add(self, command: Command) -> None:
        self.commands.append(command)

    def can_execute(self, store: FormStore) -> bool:
        return bool(self.commands) and all(c.can_execute(store) for c in self.commands)

    def execute(self, store: FormStore) -> None:
        for command in self.commands:
            command.execute(store)

    def undo(self, store: FormStore) -> None:
        for command in reversed(self.commands):
            command.undo(store)

    def redo(self, store: FormStore) -> None:
        for command in self.commands:
            command.redo(store)


class CommandHistory:
    def __init__(self, store: FormStore, max_size: int = COMMAND_HISTORY_LIMIT):
        self.store = store
        self.max_size = max_size
        self.history: List[Command] = []
        self.current_index = -1
        self.is_executing = False

    @property
    def can_undo(self) -> bool:
        return self.current_index >= 0 and not self.is_executing

    @property
    def can_redo(self) -> bool:
        return self.current_index < len(self.history) - 1 and not self.is_executing

    @property
    def last_command(self) -> Optional[Command]:
        return self.history[self.current_index] if self.current_index >= 0 else None

    @property
    def size(self) -> int:
        return len(self.history)

    def execute(self, command: Command) -> bool:
        if self.is_executing:
            logger.warning("commands: %s refused, another command is running", command.description)
            return False
        if not command.can_execute(self.store):
            logger.warning("commands: %s cannot be executed", command.description)
            return False

        self.is_executing = True
        try:
            command.execute(self.store)
        finally:
            self.is_executing = False

        # whatever could have been redone is no longer reachable
        self.history = self.history[: self.current_index + 1] + [command]
        if len(self.history) > self.max_size:
            self.history = self.history[-self.max_size:]
        self.current_index = len(self.history) - 1
        logger.debug("commands: executed %s (%d in history)", command.description, len(self.history))
        return True

    def undo(self) -> bool:
        if not self.can_undo:
            return False
        command = self.history[self.current_index]
        self.is_executing = True
        try:
            command.undo(self.store)
        finally:
            self.is_executing = False
        self.current_index -= 1
        logger.info("commands: undid %s", command.description)
        return True

    def redo(self) -> bool:
        if not self.can_redo:
            return False
        command = self.history[self.current_index + 1]
        self.is_executing = True
        try:
            command.redo(self.store)
        finally:
            self.is_executing = False
        self.current_index += 1
        logger.info("commands: redid %s", command.description)
        return True

    def clear(self) -> None:
        self.history = []
        self.current_index = -1
