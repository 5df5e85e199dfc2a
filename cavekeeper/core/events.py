"""Signals produced for the UI layer, and the notification/prompt sink.

The orchestrator never talks to a UI directly. It emits events through a
:class:`Dispatcher`; whoever renders them (the CLI, a GUI bridge, tests)
subscribes to the dispatcher.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

import structlog

from cavekeeper.core.types import Game

if TYPE_CHECKING:
    from cavekeeper.install.request import InstallRequest

logger = structlog.get_logger()


@dataclass
class UpdateCheckStarted:
    """An update check (one cave or a whole pass) began."""
    cave_id: str | None = None


@dataclass
class UpdateCheckFinished:
    """An update check (one cave or a whole pass) ended."""
    cave_id: str | None = None


@dataclass
class StatusMessage:
    """Short status line identified by a symbolic key."""
    key: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class Notification:
    """User-visible notification."""
    message: str


@dataclass
class UpgradeFound:
    """A cave has an applicable upgrade."""
    cave_id: str
    game: Game


@dataclass
class DownloadQueued:
    """An install request entered the install queue."""
    install_id: str
    request: InstallRequest


@dataclass
class ChoiceOption:
    """One selectable upload in a choice prompt."""
    label: str
    size: str
    updated_at: datetime | None
    updated_ago: str
    request: InstallRequest


@dataclass
class ChoicePrompt:
    """Ask the user to pick one of several uploads, or cancel."""
    title: str
    message: str
    options: list[ChoiceOption]
    cancel_label: str = "cancel"

    def choose(self, index: int | None) -> InstallRequest | None:
        """Request behind the chosen option, None when cancelled."""
        if index is None:
            return None
        return self.options[index].request


@dataclass
class ModalRequested:
    """A choice prompt should be shown."""
    prompt: ChoicePrompt


Listener = Callable[[Any], None]


class Dispatcher:
    """Fan out produced signals to subscribers."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: Any) -> None:
        """Deliver an event to every listener.

        A failing listener is logged and does not stop delivery to others.
        """
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error("listener_failed", event_type=type(event).__name__, error=str(e))

    def status(self, key: str, **params: Any) -> None:
        """Emit a status message."""
        self.emit(StatusMessage(key=key, params=params))

    def notify(self, message: str) -> None:
        """Emit a user-visible notification."""
        logger.info("notification", message=message)
        self.emit(Notification(message=message))

    def prompt_choice(self, prompt: ChoicePrompt) -> None:
        """Ask the user to pick among options; answered asynchronously."""
        self.emit(ModalRequested(prompt=prompt))


class EventRecorder:
    """Listener keeping every event it receives, in order."""

    def __init__(self) -> None:
        self.events: list[Any] = []

    def __call__(self, event: Any) -> None:
        self.events.append(event)

    def of_type(self, event_type: type) -> list[Any]:
        """Recorded events of one type."""
        return [event for event in self.events if isinstance(event, event_type)]
