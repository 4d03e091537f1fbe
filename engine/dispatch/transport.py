# engine/dispatch/transport.py

"""
Outbound postback transport.

Responsibilities:
- Send exactly ONE form-encoded POST per call
- Never retry
- Never inspect the response

Delivery is best-effort. Nobody waits for the callback to finish.
"""

import threading
from typing import Any, Mapping, Protocol, Tuple, Union

import requests

from engine.utils import get_logger

log = get_logger("dispatch.transport")

Timeout = Union[float, Tuple[float, float]]


class PostbackTransport(Protocol):
    def post(
        self,
        url: str,
        *,
        data: Mapping[str, Any],
        headers: Mapping[str, str],
        timeout: Timeout,
        verify: bool,
        blocking: bool = False,
    ) -> None:
        ...


class RequestsTransport:
    """
    ``requests`` backed transport.

    Non-blocking calls run on a daemon thread so they can never hold up the
    caller or interpreter shutdown.
    """

    def __init__(self, session: requests.Session | None = None):
        self.session = session

    def post(
        self,
        url: str,
        *,
        data: Mapping[str, Any],
        headers: Mapping[str, str],
        timeout: Timeout,
        verify: bool,
        blocking: bool = False,
    ) -> None:
        kwargs = {
            "data": dict(data),
            "headers": dict(headers),
            "timeout": timeout,
            "verify": verify,
        }

        if blocking:
            self._send(url, kwargs)
            return

        worker = threading.Thread(
            target=self._send,
            args=(url, kwargs),
            name="postback-transport",
            daemon=True,
        )
        worker.start()

    def _send(self, url: str, kwargs: dict) -> None:
        sender = self.session.post if self.session is not None else requests.post
        try:
            sender(url, **kwargs)
        except requests.RequestException as e:
            # A read timeout is the normal outcome of a fire-and-forget call.
            log.debug(f"Postback to {url} not acknowledged: {e}")
