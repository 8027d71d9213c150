"""Network fetch for intercepted requests."""

import http.client
import logging
import time
import urllib.error
import urllib.request
from urllib.parse import urljoin, urlparse

from .models import Request, Response

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10
DEFAULT_USER_AGENT = "HubCache/0.1"

# Headers that describe a single connection and must not be stored or forwarded.
HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
})


class NetworkError(Exception):
    """Raised when no response could be obtained from the network."""

    pass


class _NoRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Redirect handler that hands 3xx responses back instead of following them.

    Returning None from redirect_request makes urllib raise HTTPError with
    the redirect status, which the fetcher turns into a regular response.
    """

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        return None


# Create opener with custom redirect handler
_opener = urllib.request.build_opener(_NoRedirectHandler())


def origin_of(url: str) -> tuple[str, str, int | None]:
    """Return the (scheme, host, port) origin of url, with default ports filled in."""
    parsed = urlparse(url)
    scheme = parsed.scheme.lower()
    port = parsed.port
    if port is None:
        port = {"http": 80, "https": 443}.get(scheme)
    return scheme, (parsed.hostname or "").lower(), port


def same_origin(url: str, other: str) -> bool:
    return origin_of(url) == origin_of(other)


def resolve_url(origin: str, path: str) -> str:
    """Resolve a manifest path such as './index.html' against the origin."""
    return urljoin(origin, path)


def _filter_headers(headers) -> list[tuple[str, str]]:
    if headers is None:
        return []
    return [(name, value) for name, value in headers.items() if name.lower() not in HOP_BY_HOP_HEADERS]


class Fetcher:
    """Performs GET requests and classifies responses against an origin.

    Same-origin responses get type 'basic', all others 'cors'. Redirects
    are not followed. HTTP error statuses are returned as responses;
    only transport failures raise NetworkError.
    """

    def __init__(
        self,
        origin: str,
        timeout: int = DEFAULT_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self.origin = origin
        self.timeout = timeout
        self.user_agent = user_agent

    def _classify(self, url: str) -> str:
        return "basic" if same_origin(url, self.origin) else "cors"

    def fetch(self, request: Request) -> Response:
        """Fetch request from the network.

        Args:
            request: Request identity to fetch.

        Returns:
            Response with the full body buffered and unread.

        Raises:
            NetworkError: If the network could not produce a response.
        """
        start = time.monotonic()
        response_type = self._classify(request.url)

        try:
            http_request = urllib.request.Request(
                request.url,
                method=request.method,
                headers={"User-Agent": self.user_agent},
            )
            with _opener.open(http_request, timeout=self.timeout) as response:
                body = response.read()
                elapsed_ms = int((time.monotonic() - start) * 1000)
                logger.debug("Fetched %s -> %d in %dms", request.url, response.status, elapsed_ms)
                return Response(
                    status=response.status,
                    url=request.url,
                    body=body,
                    status_text=getattr(response, "reason", None) or "",
                    headers=_filter_headers(response.headers),
                    type=response_type,
                )

        except urllib.error.HTTPError as e:
            # HTTPError doubles as the response for 3xx/4xx/5xx statuses
            try:
                body = e.read() or b""
            except OSError:
                body = b""
            logger.debug("Fetched %s -> %d", request.url, e.code)
            return Response(
                status=e.code,
                url=request.url,
                body=body,
                status_text=str(e.reason) if e.reason else "",
                headers=_filter_headers(e.headers),
                type=response_type,
            )

        except urllib.error.URLError as e:
            reason = str(e.reason) if e.reason else "Connection failed"
            raise NetworkError(f"Failed to fetch {request.url}: {reason}") from e

        except TimeoutError as e:
            raise NetworkError(f"Timed out fetching {request.url} after {self.timeout}s") from e

        except OSError as e:
            raise NetworkError(f"Failed to fetch {request.url}: {e}") from e

        except http.client.HTTPException as e:
            raise NetworkError(f"Invalid response from {request.url}: {e}") from e
