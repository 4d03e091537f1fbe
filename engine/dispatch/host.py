# engine/dispatch/host.py

"""
Host capabilities injected into every async task.

One PostbackHost per request lifecycle. It bundles:
- the hook registry (lifecycle notifier)
- the token authority
- the outbound transport
- the request context
- the termination primitive
"""

from typing import Callable, Optional

from engine.dispatch.context import RequestContext
from engine.dispatch.exceptions import ExecutionTerminated
from engine.dispatch.transport import PostbackTransport, Timeout
from engine.hooks.registry import HookRegistry
from engine.tokens.authority import TokenAuthority
from engine.utils import get_logger

log = get_logger("dispatch.host")

SHUTDOWN_HOOK = "shutdown"
SSL_VERIFY_FILTER = "https_local_ssl_verify"
DIE_HANDLER_FILTER = "die_handler"

POSTBACK_HOOK_PREFIX = "admin_post_"
ANONYMOUS_POSTBACK_HOOK_PREFIX = "admin_post_nopriv_"


def postback_hook_name(action: str, authenticated: bool) -> str:
    prefix = POSTBACK_HOOK_PREFIX if authenticated else ANONYMOUS_POSTBACK_HOOK_PREFIX
    return f"{prefix}{action}"


def _default_die_handler() -> None:
    raise ExecutionTerminated(silent=False)


class PostbackHost:

    def __init__(
        self,
        *,
        hooks: HookRegistry,
        tokens: TokenAuthority,
        transport: PostbackTransport,
        postback_url: str,
        context: Optional[RequestContext] = None,
        timeout: float = 0.01,
        connect_timeout: float = 0.05,
        default_ssl_verify: bool = True,
    ):
        self.hooks = hooks
        self.tokens = tokens
        self.transport = transport
        self.postback_url = postback_url
        self.context = context or RequestContext()
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self.default_ssl_verify = default_ssl_verify

    @classmethod
    def from_settings(
        cls,
        settings,
        *,
        hooks: HookRegistry,
        transport: PostbackTransport,
        context: Optional[RequestContext] = None,
        tokens: Optional[TokenAuthority] = None,
    ) -> "PostbackHost":
        return cls(
            hooks=hooks,
            tokens=tokens or TokenAuthority.from_settings(settings),
            transport=transport,
            postback_url=settings.POSTBACK_URL,
            context=context,
            timeout=settings.POSTBACK_TIMEOUT,
            connect_timeout=settings.POSTBACK_CONNECT_TIMEOUT,
            default_ssl_verify=settings.LOCAL_SSL_VERIFY,
        )

    @property
    def request_timeout(self) -> Timeout:
        return (self.connect_timeout, self.timeout)

    def is_user_logged_in(self) -> bool:
        return bool(self.context.is_authenticated)

    def local_ssl_verify(self) -> bool:
        return bool(self.hooks.apply_filters(SSL_VERIFY_FILTER, self.default_ssl_verify))

    def die(self) -> None:
        """
        End the current request through the (overridable) die handler.

        Handlers are expected to raise ExecutionTerminated.
        """
        handler: Callable[[], None] = self.hooks.apply_filters(
            DIE_HANDLER_FILTER, _default_die_handler
        )
        handler()
        # A handler that returns still must not let the request continue.
        raise ExecutionTerminated(silent=False)

    def shutdown(self) -> int:
        """
        End-of-lifecycle notification.
        """
        return self.hooks.do_action(SHUTDOWN_HOOK)

    def route_postback(self) -> int:
        """
        Dispatch an inbound postback to the listeners of its ``action``.

        Returns:
            Number of listeners invoked (0 if the action is missing or unknown)
        """
        action = self.context.form.get("action")
        if not isinstance(action, str) or not action:
            log.info("Postback without an action field ignored")
            return 0

        hook = postback_hook_name(action, self.is_user_logged_in())
        invoked = self.hooks.do_action(hook)
        if not invoked:
            log.info(f"No listener for postback hook '{hook}'")
        return invoked
