from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Literal, Mapping

ConsoleType = Literal["log", "debug", "info", "warn", "error"]

CONSOLE_METHODS = frozenset({"Console.messageAdded", "Runtime.consoleAPICalled"})

_RUNTIME_TYPES: dict[str, ConsoleType] = {
    "warning": "warn",
    "error": "error",
    "debug": "debug",
    "info": "info",
}


@dataclass(frozen=True)
class ConsoleMessage:
    type: ConsoleType
    text: str
    timestamp: float


def _console_type(method: str, params: Mapping[str, Any]) -> ConsoleType:
    if method == "Runtime.consoleAPICalled":
        return _RUNTIME_TYPES.get(str(params.get("type")), "log")
    return "log"


def _console_text(params: Mapping[str, Any]) -> str:
    message = params.get("message")
    if isinstance(message, dict) and message.get("text"):
        return str(message["text"])
    args = params.get("args")
    if isinstance(args, list) and args and isinstance(args[0], dict):
        value = args[0].get("value")
        if value is not None:
            return str(value)
    return ""


class EventCollector:
    """Bounded buffer of console notifications pushed by the remote page.

    Holds at most ``max_messages`` entries; once full, each new message
    evicts the oldest one.
    """

    def __init__(self, max_messages: int = 1000, *, now_func: Callable[[], float] = time.time) -> None:
        if max_messages <= 0:
            raise ValueError("max_messages must be positive")
        self.max_messages = max_messages
        self._now = now_func
        self._messages: deque[ConsoleMessage] = deque(maxlen=max_messages)

    def __len__(self) -> int:
        return len(self._messages)

    def handle_notification(self, frame: Mapping[str, Any]) -> bool:
        """Record ``frame`` if it is a console notification.

        Returns False for notifications the collector does not keep.
        """

        method = frame.get("method")
        if method not in CONSOLE_METHODS:
            return False
        params = frame.get("params")
        if not isinstance(params, dict):
            params = {}
        self.add(ConsoleMessage(_console_type(method, params), _console_text(params), self._now()))
        return True

    def add(self, message: ConsoleMessage) -> None:
        self._messages.append(message)

    def messages(
        self,
        *,
        types: Iterable[ConsoleType] | None = None,
        text_contains: str | None = None,
    ) -> list[ConsoleMessage]:
        result = list(self._messages)
        if types is not None:
            wanted = set(types)
            result = [m for m in result if m.type in wanted]
        if text_contains:
            needle = text_contains.lower()
            result = [m for m in result if needle in m.text.lower()]
        return result

    def clear(self) -> None:
        self._messages.clear()
