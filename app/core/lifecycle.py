# app/core/lifecycle.py

"""
Per-request postback lifecycle.

Every request gets a fresh HookRegistry and PostbackHost. All registered
task classes are instantiated against that host, so pending payloads never
leak from one request into another.
"""

from typing import List, Optional, Tuple, Type

from fastapi import Request

from config.settings import settings
from engine.dispatch.async_task import AsyncTask
from engine.dispatch.context import RequestContext
from engine.dispatch.host import PostbackHost
from engine.dispatch.transport import PostbackTransport, RequestsTransport
from engine.dispatch.types import TaskDefinition
from engine.hooks.registry import HookRegistry
from engine.tokens.authority import TokenAuthority
from engine.utils import get_logger

log = get_logger("app.lifecycle")

TaskRegistration = Tuple[Type[AsyncTask], Optional[TaskDefinition]]

_TASK_REGISTRY: List[TaskRegistration] = []

# Shared, stateless collaborators
_TOKENS: Optional[TokenAuthority] = None
_TRANSPORT: Optional[PostbackTransport] = None


def register_task(task_cls: Type[AsyncTask], definition: Optional[TaskDefinition] = None) -> None:
    """
    Register an async task class.

    The class is instantiated once per request.
    """
    _TASK_REGISTRY.append((task_cls, definition))


def registered_tasks() -> List[TaskRegistration]:
    return list(_TASK_REGISTRY)


def clear_registry() -> None:
    _TASK_REGISTRY.clear()


def get_token_authority() -> TokenAuthority:
    global _TOKENS
    if _TOKENS is None:
        _TOKENS = TokenAuthority.from_settings(settings)
    return _TOKENS


def get_transport() -> PostbackTransport:
    global _TRANSPORT
    if _TRANSPORT is None:
        _TRANSPORT = RequestsTransport()
    return _TRANSPORT


def set_transport(transport: Optional[PostbackTransport]) -> None:
    """Swap the outbound transport (None restores the default)."""
    global _TRANSPORT
    _TRANSPORT = transport


def build_host(context: RequestContext) -> PostbackHost:
    host = PostbackHost.from_settings(
        settings,
        hooks=HookRegistry(),
        transport=get_transport(),
        context=context,
        tokens=get_token_authority(),
    )

    for task_cls, definition in _TASK_REGISTRY:
        # A misconfigured task is a programming error: let it surface.
        task_cls(host, definition)

    return host


def get_postback_host(request: Request) -> PostbackHost:
    """
    FastAPI dependency: the host built for this request.
    """
    host = getattr(request.state, "postback_host", None)
    if host is None:
        raise RuntimeError(
            "Postback host not initialized. "
            "Is the postback lifecycle middleware installed?"
        )
    return host
