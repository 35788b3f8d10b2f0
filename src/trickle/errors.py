"""Error taxonomy for relayed chat exchanges.

Transport-level errors propagate to the session controller and end up at
``on_error``; parsing-level errors are absorbed where they occur. Nothing
here is retried.
"""


class ChatError(Exception):
    """Base class for every failure the pipeline reports."""


class UpstreamUnreachable(ChatError):
    """The upstream could not be dialed or the connection dropped."""


class UpstreamNonSuccess(ChatError):
    """The upstream answered with a non-success status."""

    def __init__(self, status: int | None, body: str):
        self.status = status
        self.body = body
        prefix = f"upstream returned {status}" if status else "upstream error"
        super().__init__(f"{prefix}: {body}" if body else prefix)


class RequestTimeout(ChatError):
    """No response arrived within the per-model request timeout."""


class MalformedFrame(ChatError):
    def __init__(self, raw: str):
        self.raw = raw
        super().__init__(f"malformed frame: {raw!r}")


class OrphanToolFragment(ChatError):
    def __init__(self, index: int):
        self.index = index
        super().__init__(f"tool-call fragment for unopened index {index}")


class EmptyResponse(ChatError):
    """The stream closed without producing any answer text."""

    def __init__(self, message: str = "empty response from server"):
        super().__init__(message)


class ToolArgumentsError(ChatError):
    """A tool call's accumulated arguments are not a JSON object."""
