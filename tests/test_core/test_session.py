"""Tests for cavekeeper.core.session module."""

from cavekeeper.core.session import Session, TaskRegistry
from cavekeeper.core.types import User


class TestTaskRegistry:
    """Test TaskRegistry class."""

    def test_start_and_finish(self):
        """Test tasks are tracked until finished."""
        tasks = TaskRegistry()
        task_id = tasks.start(10, "launch")
        assert tasks.has_task(10, "launch")
        assert not tasks.has_task(10, "install")
        assert not tasks.has_task(11, "launch")

        tasks.finish(task_id)
        assert not tasks.has_task(10, "launch")
        assert tasks.tasks_for_game(10) == []

    def test_finish_unknown_is_ignored(self):
        """Test finishing an unknown task does nothing."""
        TaskRegistry().finish("missing")

    def test_tasks_for_game(self):
        """Test tasks are grouped by game."""
        tasks = TaskRegistry()
        tasks.start(10, "launch")
        tasks.start(10, "install")
        tasks.start(11, "launch")
        assert sorted(t.name for t in tasks.tasks_for_game(10)) == ["install", "launch"]


class TestSession:
    """Test Session ownership rules."""

    def test_owns_same_user(self):
        """Test records by the session user are owned."""
        session = Session(me=User(id=1))
        assert session.owns(User(id=1, username="renamed"))

    def test_does_not_own_other_user(self):
        """Test records by another user are not owned."""
        assert not Session(me=User(id=1)).owns(User(id=2))

    def test_missing_users_never_conflict(self):
        """Test a missing user on either side counts as owned."""
        assert Session(me=User(id=1)).owns(None)
        assert Session().owns(User(id=2))
