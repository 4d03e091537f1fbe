# engine/hooks/registry.py

from dataclasses import dataclass
from itertools import count
from typing import Any, Callable, Dict, List, Optional

Listener = Callable[..., Any]

DEFAULT_PRIORITY = 10


@dataclass(frozen=True, slots=True)
class HookListener:
    """
    One subscription to a named hook.

    Lower priority runs first. Ties keep insertion order.
    """

    callback: Listener
    priority: int
    accepted_args: int
    sequence: int

    def invoke(self, *args: Any) -> Any:
        return self.callback(*args[: self.accepted_args])


class _HookTable:
    __slots__ = ("_hooks", "_sequence")

    def __init__(self):
        self._hooks: Dict[str, List[HookListener]] = {}
        self._sequence = count()

    def add(self, hook: str, callback: Listener, priority: int, accepted_args: int) -> None:
        if accepted_args < 0:
            raise ValueError(f"accepted_args must be >= 0 (got {accepted_args})")
        listeners = self._hooks.setdefault(hook, [])
        listeners.append(
            HookListener(
                callback=callback,
                priority=int(priority),
                accepted_args=int(accepted_args),
                sequence=next(self._sequence),
            )
        )
        listeners.sort(key=lambda entry: (entry.priority, entry.sequence))

    def has(self, hook: str, callback: Optional[Listener]) -> bool:
        listeners = self._hooks.get(hook, [])
        if callback is None:
            return bool(listeners)
        return any(entry.callback == callback for entry in listeners)

    def remove(self, hook: str, callback: Listener) -> bool:
        listeners = self._hooks.get(hook)
        if not listeners:
            return False
        kept = [entry for entry in listeners if entry.callback != callback]
        if len(kept) == len(listeners):
            return False
        if kept:
            self._hooks[hook] = kept
        else:
            del self._hooks[hook]
        return True

    def snapshot(self, hook: str) -> List[HookListener]:
        # Listeners may subscribe to other hooks (or this one) while running.
        return list(self._hooks.get(hook, []))


class HookRegistry:
    """
    Lifecycle notifier.

    Actions are fire-and-forget notifications.
    Filters thread a value through every listener and return it.

    One registry per request lifecycle. Never shared between requests.
    """

    __slots__ = ("_actions", "_filters")

    def __init__(self):
        self._actions = _HookTable()
        self._filters = _HookTable()

    # ---- actions ----
    def add_action(
        self,
        hook: str,
        callback: Listener,
        priority: int = DEFAULT_PRIORITY,
        accepted_args: int = 1,
    ) -> None:
        self._actions.add(hook, callback, priority, accepted_args)

    def has_action(self, hook: str, callback: Optional[Listener] = None) -> bool:
        return self._actions.has(hook, callback)

    def remove_action(self, hook: str, callback: Listener) -> bool:
        return self._actions.remove(hook, callback)

    def do_action(self, hook: str, *args: Any) -> int:
        """
        Run every listener of ``hook``.

        Each listener receives at most ``accepted_args`` positional arguments.
        Listener exceptions propagate to the caller.

        Returns:
            Number of listeners invoked
        """
        listeners = self._actions.snapshot(hook)
        for listener in listeners:
            listener.invoke(*args)
        return len(listeners)

    # ---- filters ----
    def add_filter(
        self,
        hook: str,
        callback: Listener,
        priority: int = DEFAULT_PRIORITY,
        accepted_args: int = 1,
    ) -> None:
        self._filters.add(hook, callback, priority, accepted_args)

    def has_filter(self, hook: str, callback: Optional[Listener] = None) -> bool:
        return self._filters.has(hook, callback)

    def remove_filter(self, hook: str, callback: Listener) -> bool:
        return self._filters.remove(hook, callback)

    def apply_filters(self, hook: str, value: Any, *args: Any) -> Any:
        for listener in self._filters.snapshot(hook):
            value = listener.invoke(value, *args)
        return value
