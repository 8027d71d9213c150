"""Request identity and response models for the offline cache."""

from dataclasses import dataclass, field


# Response type classification, following the Fetch API names.
# basic: same-origin response; cors: cross-origin response;
# error: synthesized locally (offline page placeholder).
RESPONSE_TYPES = ("basic", "cors", "error")


class BodyUsedError(Exception):
    """Raised when a response body is read after it was already consumed."""

    pass


@dataclass(frozen=True)
class Request:
    """Identity of an intercepted request.

    Attributes:
        url: Absolute URL of the resource.
        method: HTTP method (only GET is intercepted).
    """

    url: str
    method: str = "GET"

    @property
    def key(self) -> tuple[str, str]:
        """Return the (method, url) pair used as the store key."""
        return (self.method.upper(), self.url)


@dataclass
class Response:
    """HTTP response with a body that can be read once.

    A response owns its body. Handing it to two consumers requires
    duplicate(), which yields two independent unread copies and
    consumes this one.

    Attributes:
        status: HTTP status code.
        url: URL the response was obtained from.
        status_text: HTTP reason phrase.
        headers: Ordered (name, value) header pairs.
        type: One of RESPONSE_TYPES.
        from_cache: True when produced by a store lookup.
    """

    status: int
    url: str
    body: bytes = b""
    status_text: str = ""
    headers: list[tuple[str, str]] = field(default_factory=list)
    type: str = "basic"
    from_cache: bool = False
    _used: bool = field(default=False, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.type not in RESPONSE_TYPES:
            raise ValueError(f"Invalid response type '{self.type}'. Must be one of: {RESPONSE_TYPES}")

    @property
    def ok(self) -> bool:
        """Whether the status is in the 2xx range."""
        return 200 <= self.status <= 299

    @property
    def body_used(self) -> bool:
        return self._used

    def header(self, name: str) -> str | None:
        """Return the first header value matching name (case-insensitive)."""
        lowered = name.lower()
        for key, value in self.headers:
            if key.lower() == lowered:
                return value
        return None

    def read(self) -> bytes:
        """Consume and return the body.

        Raises:
            BodyUsedError: If the body was already consumed.
        """
        if self._used:
            raise BodyUsedError(f"Body of {self.url} has already been read")
        self._used = True
        return self.body

    def duplicate(self) -> tuple["Response", "Response"]:
        """Split this response into two independent unread copies.

        Raises:
            BodyUsedError: If the body was already consumed.
        """
        body = self.read()
        return self._copy_with(body), self._copy_with(body)

    def _copy_with(self, body: bytes) -> "Response":
        return Response(
            status=self.status,
            url=self.url,
            body=body,
            status_text=self.status_text,
            headers=list(self.headers),
            type=self.type,
            from_cache=self.from_cache,
        )
