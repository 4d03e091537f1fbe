from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass
class RequestContext:
    """
    Request-scoped state handed to the dispatcher.

    cookies: forwarded verbatim on the outbound postback
    form: inbound request data (read by on_receive / execute_action)
    """

    cookies: Dict[str, Any] = field(default_factory=dict)
    form: Dict[str, Any] = field(default_factory=dict)
    is_authenticated: bool = False
