from typing import Optional


class PollingError(Exception):
    """Base class for errors raised by the webhook collaborators."""


class TransportError(PollingError):
    """A request failed at the network layer or returned a non-success code."""

    def __init__(self, url: str, message: str, status: Optional[int] = None):
        self.url = url
        self.status = status
        detail = f"HTTP {status}: {message}" if status is not None else message
        super().__init__(f"{detail} ({url})")


class InvalidResponseError(TransportError):
    """The response body could not be parsed into the expected shape."""


class SubmissionError(PollingError):
    """The submission call failed or did not return a job id."""
