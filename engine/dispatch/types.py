from dataclasses import dataclass
from enum import Enum, IntFlag


class AuthLevel(IntFlag):
    """
    Which callers may reach a task's postback handler.
    """

    LOGGED_IN = 1
    LOGGED_OUT = 2
    BOTH = LOGGED_IN | LOGGED_OUT


class DispatchState(str, Enum):
    """
    Per-instance dispatch FSM.
    Runtime-only. Never persisted.
    """

    IDLE = "IDLE"
    SCHEDULING = "SCHEDULING"
    SCHEDULED = "SCHEDULED"
    FIRING = "FIRING"
    FIRED = "FIRED"
    ABORTED = "ABORTED"


@dataclass(frozen=True, slots=True)
class TaskDefinition:
    """
    Immutable description of one async task.

    Describes WHAT the task listens to.
    Validation happens when the task is constructed.
    """

    action_name: str
    visibility: AuthLevel = AuthLevel.BOTH
    argument_arity: int = 20
    priority: int = 10
