"""
Console sample: sign on, then check, consume and release licenses.

Usage:
    # Install dependencies
    pip install -e ".[browser]"

    # Start the mock service (see examples/mock_server.py for the variables to export)
    python examples/mock_server.py

    # Run the sample
    python examples/sample_app.py

Commands:
    check A,B      Check items without consuming them
    consume A,B    Consume items; prints the license token id if releasable
    release <id>   Release a consumed license by its token id
    whoami         Show user info
    signout        Forget the stored authorization
    quit           Exit

Environment variables:
    ENTCLIENT_* - OAuth configuration, see OAuthConfig.from_env()
    ENTCLIENT_RESPONSE_TYPE - jwt, json or txt (default: jwt)
    SAMPLE_VERBOSE - Set to "true" for debug logging
"""

import logging
import os

from entitlement_client import (
    AuthorizationRequestArgs,
    EntClient,
    EntitlementClientError,
    FileAuthorizationStore,
    OAuthConfig,
    ResponseType,
)

RESPONSE_TYPE = ResponseType.from_extension(os.getenv("ENTCLIENT_RESPONSE_TYPE", "jwt"))
VERBOSE = os.getenv("SAMPLE_VERBOSE", "false").lower() == "true"


def sign_on(client: EntClient) -> bool:
    if client.load_stored_authorization():
        print("Using stored authorization")
        return True

    print("Signing on in the browser (Ctrl-C to cancel)...")
    result = client.authorize_sync(AuthorizationRequestArgs(state=os.urandom(8).hex()))
    if result is None:
        print("Sign-on cancelled")
        return False

    client.store_authorization()
    return True


def show_decisions(client: EntClient, line: str, consume: bool) -> None:
    items = [item.strip() for item in line.split(",") if item.strip()]
    if not items:
        print("Give one or more comma separated items")
        return

    decisions = client.authz_api.check_or_consume_sync(
        items, consume=consume, response_type=RESPONSE_TYPE
    )
    for item, decision in zip(items, decisions):
        status = "granted" if decision.is_granted(item) else "denied"
        error_code = decision.error_code(item)
        print(f"  {item}: {status}" + (f" ({error_code})" if error_code else ""))
        if consume and decision.is_releasable(item):
            print(f"    release with: release {decision.token_id}")


def run(client: EntClient) -> None:
    name = client.authorization.display_name() or "anonymous"
    print(f"\nWelcome, {name}!")
    print(f"Computer id: {client.computer_id}\n")

    while True:
        try:
            command, _, argument = input("> ").strip().partition(" ")
        except EOFError:
            return

        try:
            if command == "check":
                show_decisions(client, argument, consume=False)
            elif command == "consume":
                show_decisions(client, argument, consume=True)
            elif command == "release":
                client.authz_api.release_license_sync(argument.strip(), RESPONSE_TYPE)
                print(f"  Released {argument.strip()}")
            elif command == "whoami":
                for key, value in client.user_info().items():
                    print(f"  {key}: {value}")
            elif command == "signout":
                client.clear_authorization()
                print("Signed out")
                return
            elif command in ("quit", "exit"):
                return
            elif command:
                print(f"Unknown command: {command}")
        except EntitlementClientError as e:
            print(f"❌ {type(e).__name__}: {e}")


def main() -> None:
    logging.basicConfig(
        level=logging.DEBUG if VERBOSE else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    client = EntClient(
        OAuthConfig.from_env(),
        store=FileAuthorizationStore("sample-app"),
    )
    try:
        if not sign_on(client):
            return
    except EntitlementClientError as e:
        print(f"❌ Sign-on failed: {e}")
        return

    run(client)


if __name__ == "__main__":
    main()
