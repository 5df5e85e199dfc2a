"""Current session: logged-in user and running tasks."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field

import structlog

from cavekeeper.core.types import User

logger = structlog.get_logger()


@dataclass
class Task:
    """A unit of work running against one game (launch, install, ...)."""

    id: str
    game_id: int
    name: str


class TaskRegistry:
    """Registry of running tasks, indexed by game."""

    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}

    def start(self, game_id: int, name: str) -> str:
        """Register a running task and return its ID."""
        task = Task(id=uuid.uuid4().hex, game_id=game_id, name=name)
        self._tasks[task.id] = task
        logger.debug("task_started", task_id=task.id, game_id=game_id, name=name)
        return task.id

    def finish(self, task_id: str) -> None:
        """Remove a task. Unknown IDs are ignored."""
        task = self._tasks.pop(task_id, None)
        if task is not None:
            logger.debug("task_finished", task_id=task_id, game_id=task.game_id, name=task.name)

    def tasks_for_game(self, game_id: int) -> list[Task]:
        """All running tasks for a game."""
        return [task for task in self._tasks.values() if task.game_id == game_id]

    def has_task(self, game_id: int, name: str) -> bool:
        """Whether a task with the given name is running for a game."""
        return any(task.name == name for task in self.tasks_for_game(game_id))


@dataclass
class Session:
    """Credentials and runtime state of the logged-in user."""

    me: User | None = None
    tasks: TaskRegistry = field(default_factory=TaskRegistry)

    def owns(self, user: User | None) -> bool:
        """Whether a record made by ``user`` belongs to this session.

        Records without a user, or sessions without one, never conflict.
        """
        if user is None or self.me is None:
            return True
        return user.id == self.me.id
