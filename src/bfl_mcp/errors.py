"""Exceptions raised by the BFL client, poller and orchestrator."""

from typing import Iterable, Optional


class BFLError(Exception):
    """Base class for every recoverable error in this package."""


class InvalidModel(BFLError):
    """Unknown model selector."""

    def __init__(self, model: str, valid: Iterable[str]):
        self.model = model
        self.valid = list(valid)
        super().__init__(f"Invalid model: {model}. Valid options: {', '.join(self.valid)}")


class InvalidParameters(BFLError):
    """Tool arguments rejected before anything is sent to the provider."""


class ProviderError(BFLError):
    """Non-success response from the BFL API."""

    def __init__(self, http_status: Optional[int], body: str):
        self.http_status = http_status
        self.body = body
        super().__init__(f"BFL API error ({http_status}): {body}")

    @property
    def transient(self) -> bool:
        """Whether the same request may succeed if repeated."""
        return self.http_status == 429 or (self.http_status or 0) >= 500


class ProviderConnectionError(ProviderError):
    """The BFL API could not be reached at all."""

    def __init__(self, body: str):
        super().__init__(None, body)

    @property
    def transient(self) -> bool:
        return True

    def __str__(self) -> str:
        return f"BFL API unreachable: {self.body}"


class SchemaError(BFLError):
    """Provider response did not have the expected shape."""


class PollingTimeout(BFLError):
    """Job still pending after the polling budget was used up."""

    def __init__(self, request_id: Optional[str], attempts: int):
        self.request_id = request_id
        self.attempts = attempts
        super().__init__(f"Polling timeout after {attempts} attempts")


class UnknownJob(BFLError):
    """The provider has no record of the request id."""

    def __init__(self, request_id: Optional[str]):
        self.request_id = request_id
        super().__init__(f"Request not found: {request_id}")


class ArtifactError(BFLError):
    """Generated image cannot be retrieved."""

    def __init__(self, request_id: str, message: str):
        self.request_id = request_id
        super().__init__(message)


class NotReady(ArtifactError):
    def __init__(self, request_id: str):
        super().__init__(request_id, f"Image for request {request_id} is not ready yet (status: Pending)")


class GenerationFailed(ArtifactError):
    def __init__(self, request_id: str, detail: Optional[str]):
        self.detail = detail
        super().__init__(request_id, f"Image generation for request {request_id} failed: {detail}")


class MissingArtifact(ArtifactError):
    def __init__(self, request_id: str):
        super().__init__(request_id, f"Request {request_id} is ready but has no image URL")


class TransferFailed(ArtifactError):
    def __init__(self, request_id: str, reason: str):
        self.reason = reason
        super().__init__(request_id, f"Failed to transfer image for request {request_id}: {reason}")


class ConfigError(Exception):
    """Invalid process configuration. Fatal at startup."""


class MissingCredential(ConfigError):
    def __init__(self, variable: str):
        self.variable = variable
        super().__init__(f"{variable} environment variable must be set")
