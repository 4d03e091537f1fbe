# engine/dispatch/exceptions.py

class PostbackError(Exception):
    """Base class for postback dispatch errors"""


class TaskConfigurationError(PostbackError):
    """Raised when a task is constructed without an action name."""


class ExecutionTerminated(PostbackError):
    """
    Raised by a die handler to end the current request.

    silent=True means no page output at all.
    """

    def __init__(self, silent: bool = False):
        super().__init__("Execution terminated")
        self.silent = silent
