"""
System browser sign-on with a loopback redirect receiver (Starlette + uvicorn).
"""

from __future__ import annotations

import logging
import queue
import threading
import time
import webbrowser
from typing import Any, Callable
from urllib.parse import urlsplit

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse
from starlette.routing import Route

from ..errors import ConfigurationError
from ..flow import SurfaceOutcome

logger = logging.getLogger(__name__)

LOOPBACK_HOSTS = frozenset({"127.0.0.1", "localhost", "::1"})

SIGNED_ON_PAGE = """<!DOCTYPE html>
<html>
<head><title>Signed on</title></head>
<body><p>Sign-on complete. You can close this window and return to the application.</p></body>
</html>
"""


def create_redirect_app(redirect_path: str, on_redirect: Callable[[str], Any]) -> Starlette:
    """
    Create an ASGI app that reports the redirect it receives.

    Args:
        redirect_path: Path of the registered redirect URI, e.g. "/callback"
        on_redirect: Called with the full redirect URI, query included

    Example:
        >>> app = create_redirect_app("/callback", received.append)
    """

    async def receive_redirect(request: Request) -> HTMLResponse:
        on_redirect(str(request.url))
        return HTMLResponse(SIGNED_ON_PAGE)

    return Starlette(routes=[Route(redirect_path, receive_redirect)])


class LoopbackBrowserSurface:
    """
    Opens the authorization URI in the system browser and waits for the
    identity provider to redirect to a local HTTP server.

    The redirect URI must be a loopback ``http`` URI with an explicit port,
    e.g. ``http://127.0.0.1:8765/callback``. Only query responses reach the
    server, so this works with the authorization code grant but not with
    grants that answer in the URI fragment.

    Pressing Ctrl-C while waiting cancels the sign-on.

    Args:
        open_browser: Opens a URI in a browser. Default: webbrowser.open
        timeout_s: How long to wait for the redirect. None waits until the
            user acts. On timeout TimeoutError is raised.
    """

    def __init__(
        self,
        open_browser: Callable[[str], Any] = webbrowser.open,
        timeout_s: float | None = None,
    ):
        self.open_browser = open_browser
        self.timeout_s = timeout_s
        self._server: uvicorn.Server | None = None
        self._thread: threading.Thread | None = None

    def show(self, initial_uri: str, redirect_uri_prefix: str | None) -> SurfaceOutcome:
        host, port, path = self._parse_redirect_uri(redirect_uri_prefix)
        received: queue.Queue[str] = queue.Queue()

        app = create_redirect_app(path, received.put)
        self._server = uvicorn.Server(
            uvicorn.Config(app, host=host, port=port, log_level="warning")
        )
        self._thread = threading.Thread(
            target=self._server.run,
            name="loopback-redirect-receiver",
            daemon=True,
        )
        self._thread.start()
        while not self._server.started and self._thread.is_alive():
            time.sleep(0.01)
        if not self._server.started:
            raise ConfigurationError(
                f"Cannot receive the authorization redirect on {host}:{port}, "
                "the port may already be in use"
            )

        logger.info("Opening browser for sign-on")
        self.open_browser(initial_uri)

        try:
            final_uri = received.get(timeout=self.timeout_s)
        except queue.Empty:
            raise TimeoutError(
                f"No authorization redirect received within {self.timeout_s} seconds"
            ) from None
        except KeyboardInterrupt:
            return SurfaceOutcome.cancel()

        return SurfaceOutcome.redirected(final_uri)

    def close(self) -> None:
        server, self._server = self._server, None
        thread, self._thread = self._thread, None
        if server is not None:
            server.should_exit = True
        if thread is not None:
            thread.join(timeout=5.0)

    @staticmethod
    def _parse_redirect_uri(redirect_uri: str | None) -> tuple[str, int, str]:
        if not redirect_uri:
            raise ConfigurationError("OAuthConfig.redirect_uri must be specified")
        parts = urlsplit(redirect_uri)
        host = parts.hostname or ""
        if parts.scheme != "http" or host not in LOOPBACK_HOSTS:
            raise ConfigurationError(
                f"Redirect URI must be a loopback http URI, got {redirect_uri!r}"
            )
        if parts.port is None:
            raise ConfigurationError(f"Redirect URI must include a port: {redirect_uri!r}")
        return host, parts.port, parts.path or "/"
