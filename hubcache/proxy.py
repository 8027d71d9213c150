"""HTTP proxy server that routes GET requests through the offline interceptor."""

import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, Optional

from .config import ProxyConfig
from .fetcher import HOP_BY_HOP_HEADERS, resolve_url, same_origin
from .interceptor import LifecycleError, OfflineInterceptor
from .models import Request, Response
from .security import SSRFError, validate_path, validate_target_url
from .store import StoreError

logger = logging.getLogger(__name__)

# Reserved path prefix for the proxy's own endpoints.
CONTROL_PREFIX = "/_hubcache/"

# Headers recomputed by the proxy rather than copied from the stored response.
_SKIPPED_HEADERS = HOP_BY_HOP_HEADERS | {"content-length"}


class ProxyError(Exception):
    """Raised when the proxy server fails to start."""
    pass


class ProxyHandler(BaseHTTPRequestHandler):
    """HTTP request handler passing GET requests to the interceptor."""

    # Class-level references set by factory
    interceptor: Optional[OfflineInterceptor] = None
    allow_private: bool = False

    protocol_version = "HTTP/1.0"

    def log_message(self, format: str, *args: Any) -> None:
        """Override to use Python logging instead of stderr."""
        logger.debug("Proxy %s - %s", self.address_string(), format % args)

    def _send_json(self, code: int, data: Dict[str, Any]) -> None:
        """Send a JSON response with the given status code."""
        body = json.dumps(data, indent=2).encode("utf-8")
        self.send_response(code)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Connection", "close")
        self.end_headers()
        self.wfile.write(body)

    def _send_error_json(self, code: int, message: str) -> None:
        """Send a JSON error response."""
        self._send_json(code, {"error": message})

    def _send_response(self, response: Response) -> None:
        """Write an intercepted response back to the client."""
        body = response.read()
        self.send_response(response.status, response.status_text or None)
        for name, value in response.headers:
            if name.lower() not in _SKIPPED_HEADERS:
                self.send_header(name, value)
        if response.from_cache:
            self.send_header("X-From-Cache", "true")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Connection", "close")
        self.end_headers()
        self.wfile.write(body)

    def _target_url(self) -> Optional[str]:
        """Map the request target to an absolute URL.

        Returns None (after sending an error) if the target is rejected.
        """
        origin = self.interceptor.origin

        if self.path.startswith(("http://", "https://")):
            # Absolute-form target: used as a forward proxy
            try:
                local = same_origin(self.path, origin)
            except ValueError as e:
                logger.warning("Malformed proxy target %s: %s", self.path, e)
                self._send_error_json(400, "Invalid request target")
                return None
            if not local:
                try:
                    validate_target_url(self.path, allow_private=self.allow_private)
                except SSRFError as e:
                    logger.warning("Blocked proxy target %s: %s", self.path, e)
                    self._send_error_json(403, f"Target not allowed: {e}")
                    return None
            return self.path

        if not validate_path(self.path):
            self._send_error_json(400, "Invalid request target")
            return None
        return resolve_url(origin, self.path)

    def do_GET(self) -> None:
        """Handle GET requests."""
        try:
            if self.path.startswith(CONTROL_PREFIX):
                self._handle_control()
                return

            url = self._target_url()
            if url is None:
                return

            response = self.interceptor.handle(Request(url=url))
            self._send_response(response)
        except LifecycleError as e:
            logger.error("Interceptor not ready: %s", e)
            self._send_error_json(503, "Cache is not active")
        except StoreError as e:
            logger.error("Cache storage error for %s: %s", self.path, e)
            self._send_error_json(500, "Cache storage error")
        except Exception as e:
            logger.exception("Error handling request: %s", e)
            self._send_error_json(500, "Internal server error")

    def _handle_control(self) -> None:
        if self.path == CONTROL_PREFIX + "health":
            self._handle_health()
        else:
            self._send_error_json(404, "Not found")

    def _handle_health(self) -> None:
        """Handle GET /_hubcache/health endpoint."""
        self._send_json(200, {
            "status": "ok",
            "cache": self.interceptor.cache_name,
            "phase": self.interceptor.phase,
        })


def _create_handler_class(
    interceptor: OfflineInterceptor,
    allow_private: bool = False,
) -> type:
    """Create a handler class with the interceptor and config bound."""

    class BoundProxyHandler(ProxyHandler):
        pass

    BoundProxyHandler.interceptor = interceptor
    BoundProxyHandler.allow_private = allow_private
    return BoundProxyHandler


class ProxyServer:
    """Threaded HTTP proxy serving requests through an OfflineInterceptor."""

    def __init__(
        self,
        config: ProxyConfig,
        interceptor: OfflineInterceptor,
    ) -> None:
        """Initialize the proxy server.

        Args:
            config: Proxy configuration.
            interceptor: Activated interceptor answering requests.
        """
        self.config = config
        self.interceptor = interceptor
        self._server: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """Start the proxy server in a background thread.

        Raises:
            ProxyError: If the server fails to start.
        """
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Proxy server is already running")
            return

        try:
            handler_class = _create_handler_class(self.interceptor, self.config.allow_private)
            self._server = ThreadingHTTPServer((self.config.host, self.config.port), handler_class)
            self._server.daemon_threads = True

            self._thread = threading.Thread(
                target=self._server.serve_forever,
                kwargs={"poll_interval": 0.5},
                name="proxy-server",
                daemon=True,
            )
            self._thread.start()

            logger.info("Proxy server started on %s:%d", self.config.host, self.port)

        except OSError as e:
            # Provide specific guidance based on error type
            if e.errno == 98 or e.errno == 48:  # EADDRINUSE (Linux=98, macOS=48)
                raise ProxyError(
                    f"Port {self.config.port} is already in use. "
                    f"Another process may be using this port, or hubcache is already running."
                )
            elif e.errno == 13:  # EACCES - Permission denied
                raise ProxyError(
                    f"Permission denied for port {self.config.port}. "
                    f"Ports below 1024 require root privileges. "
                    f"Use a port >= 1024 or run with elevated permissions."
                )
            else:
                raise ProxyError(f"Failed to start proxy server on port {self.config.port}: {e}")

    @property
    def port(self) -> int:
        """Port the server is bound to."""
        if self._server is not None:
            return self._server.server_address[1]
        return self.config.port

    def stop(self) -> None:
        """Stop the proxy server gracefully."""
        if self._thread is None:
            return

        logger.info("Stopping proxy server...")

        if self._server:
            self._server.shutdown()
            self._server.server_close()

        if self._thread.is_alive():
            self._thread.join(timeout=5.0)

        self._server = None
        self._thread = None
        logger.info("Proxy server stopped")

    @property
    def is_running(self) -> bool:
        """Check if the server is running."""
        return self._thread is not None and self._thread.is_alive()
