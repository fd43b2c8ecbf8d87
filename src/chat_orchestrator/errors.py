"""Error taxonomy shared by every collaborator call site.

Each failure is converted to one of these classes where it happens, so the outer
boundary only has to decide how to render it. `user_message` is what the caller sees on
the content channel; `str(exc)` is what goes to the log channel.
"""

from __future__ import annotations


class OrchestratorError(Exception):
    """Base class for classified failures."""

    kind = "error"
    user_message = "I apologize, but something went wrong while handling your request. Please try again."

    def __init__(self, message: str, *, user_message: str | None = None) -> None:
        super().__init__(message)
        if user_message is not None:
            self.user_message = user_message


class RequestValidationError(OrchestratorError):
    kind = "validation_error"
    user_message = "I couldn't read that request. Please send a list of messages with a role and content."


class UpstreamTimeout(OrchestratorError):
    kind = "timeout"
    user_message = "I apologize, but the request took too long to complete. Please try again with a simpler request."

    def __init__(self, collaborator: str, seconds: float) -> None:
        super().__init__(f"{collaborator} did not respond within {seconds:g}s")
        self.collaborator = collaborator
        self.seconds = seconds


class CapabilityIncompatibility(OrchestratorError):
    """The agent runner cannot execute in this environment; never shown to the user."""

    kind = "capability_incompatibility"


class UpstreamProviderError(OrchestratorError):
    kind = "provider_error"

    def __init__(self, provider: str, message: str, *, status_code: int | None = None) -> None:
        super().__init__(
            f"{provider} request failed"
            + (f" with status {status_code}" if status_code else "")
            + f": {message}",
            user_message=f"I apologize, but the {provider} service returned an error. Please try again.",
        )
        self.provider = provider
        self.status_code = status_code


class CommandExecutionError(OrchestratorError):
    kind = "command_error"


class AuthenticationRequired(OrchestratorError):
    kind = "auth_required"
    user_message = "That command needs you to be signed in. Please sign in and try again."


class MissingCredentials(OrchestratorError):
    kind = "missing_credentials"

    def __init__(self, provider_label: str) -> None:
        super().__init__(
            f"{provider_label} API key is not configured",
            user_message=(
                f"I apologize, but the {provider_label} API key is not configured. "
                "Please configure it and try again."
            ),
        )
        self.provider_label = provider_label
