from unittest.mock import Mock

from engine.dispatch.async_task import AsyncTask
from engine.dispatch.context import RequestContext
from engine.dispatch.host import PostbackHost
from engine.dispatch.types import AuthLevel, TaskDefinition
from engine.hooks.registry import HookRegistry
from engine.tokens.authority import TokenAuthority, hmac_hasher

POSTBACK_URL = "https://example.test/api/v1/admin-post"


class FixedWindow:
    """Window source the test can move by hand."""

    def __init__(self, window: int = 1):
        self.window = window

    def __call__(self) -> int:
        return self.window


class Async(AsyncTask):
    definition = TaskDefinition(action_name="async")

    def __init__(self, host, definition=None, prepare=None):
        self.prepared = []
        self.executed = []
        self._prepare = prepare
        super().__init__(host, definition)

    def prepare_payload(self, args):
        self.prepared.append(args)
        if self._prepare is not None:
            return self._prepare(args)
        return {}

    def execute_action(self):
        self.executed.append(self.action_name)


class NoAction(AsyncTask):

    def prepare_payload(self, args):
        return {}

    def execute_action(self):
        pass


def make_tokens(window=None) -> TokenAuthority:
    return TokenAuthority(
        window_source=window or FixedWindow(),
        keyed_hash=hmac_hasher("test-nonce-secret"),
    )


def make_host(context=None, window=None, transport=None) -> PostbackHost:
    return PostbackHost(
        hooks=HookRegistry(),
        tokens=make_tokens(window),
        transport=transport or Mock(),
        postback_url=POSTBACK_URL,
        context=context or RequestContext(),
    )


LOGGED_IN_ONLY = TaskDefinition(action_name="async", visibility=AuthLevel.LOGGED_IN)
LOGGED_OUT_ONLY = TaskDefinition(action_name="async", visibility=AuthLevel.LOGGED_OUT)
