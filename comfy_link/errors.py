"""Error kinds raised by the ComfyUI client."""


class ComfyError(Exception):
    """Base class for all client errors."""


class NotConnectedError(ComfyError):
    """An operation needing a live websocket was attempted while disconnected."""

    def __init__(self, message: str = "Not connected to ComfyUI"):
        super().__init__(message)


class CatalogUnavailableError(ComfyError):
    """A graph was built before the node-type catalog was fetched."""

    def __init__(self, message: str = "Node-type catalog has not been fetched"):
        super().__init__(message)


class CatalogFetchError(ComfyError):
    """Fetching or parsing /object_info failed."""


class DocumentMalformedError(ComfyError):
    """The workflow document is unparsable or structurally inconsistent."""


class NoEmbeddedWorkflowError(ComfyError):
    """An image did not carry a workflow in its metadata."""

    def __init__(self, key: str = "workflow"):
        self.key = key
        super().__init__(f"Image does not contain '{key}' metadata")


class MissingNodeTypesError(ComfyError):
    """A graph references node types the server does not know."""

    def __init__(self, missing: list[str]):
        self.missing = list(missing)
        super().__init__(f"Missing node types: {', '.join(self.missing)}")


class FrameDecodeError(ComfyError):
    """An inbound websocket frame could not be decoded."""

    def __init__(self, message: str, frame: str | None = None):
        self.frame = frame
        super().__init__(message)


class NetworkError(ComfyError):
    """Network error with status code and details."""

    def __init__(
        self,
        code: int,
        message: str,
        url: str,
        status: int | None = None,
        data: dict | None = None,
    ):
        self.code = code
        self.message = message
        self.url = url
        self.status = status
        self.data = data
        super().__init__(message)

    def __str__(self):
        return self.message


class SubmitError(NetworkError):
    """The server rejected a prompt, usually with per-node validation errors."""

    @property
    def node_errors(self) -> dict:
        if isinstance(self.data, dict):
            return self.data.get("node_errors") or {}
        return {}
