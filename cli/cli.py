import argparse
import sys

import requests
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config.settings import settings
from engine.dispatch.cookies import build_cookie_header
from engine.tokens.authority import (
    POSTBACK_ACTION_PREFIX,
    TokenAuthority,
    VerifyResult,
    hmac_hasher,
)

console = Console()


# --- Helper Functions ---

def print_error(message, details=None):
    console.print(f"[bold red]❌ Error:[/bold red] {message}")
    if details:
        console.print(Panel(str(details), title="Details", border_style="red"))


def print_success(message):
    console.print(f"[bold green]✅ Success:[/bold green] {message}")


def parse_pairs(pairs):
    """
    Turns ["a=1", "b=2"] into {"a": "1", "b": "2"}.
    """
    parsed = {}
    for pair in pairs or []:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise ValueError(f"Expected name=value, got '{pair}'")
        parsed[name] = value
    return parsed


def build_authority(window=None) -> TokenAuthority:
    if window is None:
        return TokenAuthority.from_settings(settings)
    # Pin the window so old nonces can be inspected.
    return TokenAuthority(
        window_source=lambda: window,
        keyed_hash=hmac_hasher(settings.NONCE_KEY),
    )


def handle_nonce_create(args) -> int:
    authority = build_authority(args.window)
    scope = TokenAuthority.action_scope_for(args.action)
    nonce = authority.create(scope, args.identity)

    table = Table(title="Postback Nonce", show_header=True, header_style="bold magenta")
    table.add_column("Field", style="dim")
    table.add_column("Value", style="bold white")
    table.add_row("Scope", scope)
    table.add_row("Identity", args.identity)
    table.add_row("Window", str(authority.current_window()))
    table.add_row("Nonce", nonce)
    console.print(table)
    return 0


def handle_nonce_verify(args) -> int:
    authority = build_authority(args.window)
    scope = TokenAuthority.action_scope_for(args.action)
    result = authority.verify(args.token, scope, args.identity)

    if result is VerifyResult.INVALID:
        print_error(f"Nonce rejected for scope '{scope}'")
        return 1

    print_success(f"Nonce accepted ({result.name}) for scope '{scope}'")
    return 0


def handle_postback_send(args) -> int:
    """
    Sends a BLOCKING postback and reports the status. Debugging aid only:
    the application itself never waits for its postbacks.
    """
    try:
        fields = parse_pairs(args.field)
        cookies = parse_pairs(args.cookie)
    except ValueError as e:
        print_error("Invalid argument", e)
        return 2

    authority = build_authority()
    body = dict(fields)
    body["action"] = f"{POSTBACK_ACTION_PREFIX}{args.action}"
    body["_nonce"] = authority.create(TokenAuthority.action_scope_for(args.action), args.identity)

    url = args.url or settings.POSTBACK_URL
    headers = {"cookie": build_cookie_header(cookies)}

    with console.status(f"[bold yellow]Sending postback '{body['action']}'...", spinner="earth"):
        try:
            response = requests.post(
                url,
                data=body,
                headers=headers,
                timeout=10,
                verify=not args.insecure,
            )
        except requests.exceptions.RequestException as e:
            print_error(f"Failed to reach {url}. Is it running?", e)
            return 1

    if response.status_code >= 400:
        print_error(f"Postback answered {response.status_code}", response.text)
        return 1

    print_success(f"Postback answered {response.status_code}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Deferred Postback CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # --- nonce ---
    nonce_parser = subparsers.add_parser("nonce", help="Create or verify postback nonces")
    nonce_sub = nonce_parser.add_subparsers(dest="nonce_command", required=True)

    create_parser = nonce_sub.add_parser("create", help="Create a nonce")
    create_parser.add_argument("--action", required=True, help="Task action name")
    create_parser.add_argument("--identity", required=True, help="Task type identity (module.Class)")
    create_parser.add_argument("--window", type=int, help="Pin the nonce window")
    create_parser.set_defaults(func=handle_nonce_create)

    verify_parser = nonce_sub.add_parser("verify", help="Verify a nonce")
    verify_parser.add_argument("token")
    verify_parser.add_argument("--action", required=True, help="Task action name")
    verify_parser.add_argument("--identity", required=True, help="Task type identity (module.Class)")
    verify_parser.add_argument("--window", type=int, help="Pin the nonce window")
    verify_parser.set_defaults(func=handle_nonce_verify)

    # --- postback ---
    postback_parser = subparsers.add_parser("postback", help="Send a postback by hand")
    postback_sub = postback_parser.add_subparsers(dest="postback_command", required=True)

    send_parser = postback_sub.add_parser("send", help="Send a signed postback and wait for the answer")
    send_parser.add_argument("--action", required=True, help="Task action name")
    send_parser.add_argument("--identity", required=True, help="Task type identity (module.Class)")
    send_parser.add_argument("--field", action="append", help="Body field name=value (repeatable)")
    send_parser.add_argument("--cookie", action="append", help="Cookie name=value (repeatable)")
    send_parser.add_argument("--url", help=f"Postback URL (default: {settings.POSTBACK_URL})")
    send_parser.add_argument("--insecure", action="store_true", help="Skip TLS verification")
    send_parser.set_defaults(func=handle_postback_send)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
