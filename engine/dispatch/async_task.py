# engine/dispatch/async_task.py

"""
Deferred postback tasks.

Phase 1 (trigger): a host event hands us its arguments. We prepare the
payload, sign it with a nonce and wait for the end of the request.

Phase 2 (fire): on ``shutdown`` we send one non-blocking POST to our own
postback endpoint. Firing at shutdown rather than immediately gives the
writes made during this request time to reach whatever the postback reads.

Phase 3 (receive): in a new request, the postback endpoint verifies the nonce,
runs the action and terminates without rendering anything.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, ClassVar, Dict, List, Optional

from engine.dispatch.cookies import build_cookie_header, build_form_body
from engine.dispatch.exceptions import ExecutionTerminated, TaskConfigurationError
from engine.dispatch.host import (
    DIE_HANDLER_FILTER,
    SHUTDOWN_HOOK,
    PostbackHost,
    postback_hook_name,
)
from engine.dispatch.types import AuthLevel, DispatchState, TaskDefinition
from engine.tokens.authority import (
    ANONYMOUS_PREFIX,
    POSTBACK_ACTION_PREFIX,
    TokenAuthority,
    VerifyResult,
)
from engine.utils import get_logger

log = get_logger("dispatch.task")

RESERVED_KEYS = ("action", "_nonce")


class AsyncTask(ABC):
    """
    The base class every deferred task inherits from.

    Subclasses provide:
    - ``definition`` (class attribute) or pass one to the constructor
    - ``prepare_payload``: build the postback body, raise to cancel
    - ``execute_action``: do the actual work inside the postback request
    """

    definition: ClassVar[Optional[TaskDefinition]] = None

    def __init__(self, host: PostbackHost, definition: Optional[TaskDefinition] = None):
        definition = definition or type(self).definition
        if definition is None or not definition.action_name:
            raise TaskConfigurationError(
                f"Action not defined for class {type(self).__name__}"
            )
        if definition.action_name.startswith(ANONYMOUS_PREFIX):
            # The prefix marks anonymous callers at receive time.
            raise TaskConfigurationError(
                f"Action '{definition.action_name}' of class {type(self).__name__} "
                f"must not start with '{ANONYMOUS_PREFIX}'"
            )

        self.host = host
        self.definition = definition
        self.action_name: str = definition.action_name
        self.state = DispatchState.IDLE

        self._body_data: Optional[Dict[str, Any]] = None
        self._fire_registered = False

        hooks = host.hooks
        hooks.add_action(
            definition.action_name,
            self.on_trigger,
            definition.priority,
            definition.argument_arity,
        )
        if definition.visibility & AuthLevel.LOGGED_IN:
            hooks.add_action(postback_hook_name(self.postback_action, True), self.on_receive)
        if definition.visibility & AuthLevel.LOGGED_OUT:
            hooks.add_action(postback_hook_name(self.postback_action, False), self.on_receive)

    # -------------------------
    # IMPLEMENTER HOOKS
    # -------------------------

    @abstractmethod
    def prepare_payload(self, args: List[Any]) -> Mapping:
        """
        Turn the raw trigger arguments into the postback body.

        Return a mapping of field names to values. Do not set ``action``
        or ``_nonce``; both are overwritten.

        Raise any exception to cancel the postback.
        """

    @abstractmethod
    def execute_action(self) -> None:
        """
        Do the deferred work.

        Runs inside the postback request. Read inputs from
        ``self.host.context.form``. ``self.action_name`` carries the
        ``nopriv_`` prefix when the caller is anonymous.
        """

    # -------------------------
    # IDENTITY & NONCES
    # -------------------------

    @property
    def postback_action(self) -> str:
        return f"{POSTBACK_ACTION_PREFIX}{self.definition.action_name}"

    @property
    def type_identity(self) -> str:
        cls = type(self)
        return f"{cls.__module__}.{cls.__qualname__}"

    @property
    def pending_payload(self) -> Optional[Dict[str, Any]]:
        if self._body_data is None:
            return None
        return dict(self._body_data)

    def nonce_scope(self) -> str:
        return TokenAuthority.action_scope_for(self.action_name)

    def create_nonce(self) -> str:
        return self.host.tokens.create(self.nonce_scope(), self.type_identity)

    def verify_nonce(self, nonce: Any) -> VerifyResult:
        return self.host.tokens.verify(nonce, self.nonce_scope(), self.type_identity)

    # -------------------------
    # PHASE 1: TRIGGER
    # -------------------------

    def on_trigger(self, *args: Any) -> None:
        """
        Prepare the payload and arrange for it to fire at shutdown.

        A failing ``prepare_payload`` cancels the postback. It never
        reaches the request that triggered it.
        """
        self.state = DispatchState.SCHEDULING

        try:
            data = self.prepare_payload(list(args))
            if not isinstance(data, Mapping):
                raise TypeError(
                    f"prepare_payload must return a mapping, got {type(data).__name__}"
                )
        except Exception as e:
            log.warning(f"Postback '{self.action_name}' cancelled during preparation: {e}")
            self.state = (
                DispatchState.SCHEDULED if self._body_data else DispatchState.ABORTED
            )
            return

        body = dict(data)
        body["action"] = self.postback_action
        body["_nonce"] = self.create_nonce()

        self._body_data = body
        self.state = DispatchState.SCHEDULED

        if not self._fire_registered:
            self.host.hooks.add_action(SHUTDOWN_HOOK, self.on_fire)
            self._fire_registered = True

    # -------------------------
    # PHASE 2: FIRE
    # -------------------------

    def on_fire(self) -> None:
        if not self._body_data:
            return

        self.state = DispatchState.FIRING
        body, self._body_data = self._body_data, None

        headers = {"cookie": build_cookie_header(self.host.context.cookies)}

        log.info(f"Firing postback '{body['action']}' to {self.host.postback_url}")
        try:
            self.host.transport.post(
                self.host.postback_url,
                data=build_form_body(body),
                headers=headers,
                timeout=self.host.request_timeout,
                verify=self.host.local_ssl_verify(),
                blocking=False,
            )
        except Exception as e:
            # Later shutdown listeners still have their own postbacks to send.
            log.warning(f"Postback '{body['action']}' could not be sent: {e}")
            self.state = DispatchState.ABORTED
            return
        self.state = DispatchState.FIRED

    # -------------------------
    # PHASE 3: RECEIVE
    # -------------------------

    def on_receive(self) -> None:
        """
        Verify the postback, run the action, then end the request.

        The request ends the same way whether or not the action ran.
        """
        nonce = self.host.context.form.get("_nonce")

        if nonce is None:
            log.info(f"Postback '{self.action_name}' rejected: no nonce")
        elif not self.verify_nonce(nonce):
            log.info(f"Postback '{self.action_name}' rejected: invalid nonce")
        else:
            if not self.host.is_user_logged_in() and self.action_name == self.definition.action_name:
                self.action_name = f"{ANONYMOUS_PREFIX}{self.action_name}"
            self._run_action()

        self.host.hooks.add_filter(DIE_HANDLER_FILTER, self._silent_die_handler)
        self.host.die()

    def _run_action(self) -> None:
        try:
            self.execute_action()
        except ExecutionTerminated:
            raise
        except Exception:
            log.exception(f"Postback action '{self.action_name}' failed")

    @staticmethod
    def _silent_die_handler(_default=None):
        def terminate() -> None:
            raise ExecutionTerminated(silent=True)

        return terminate
