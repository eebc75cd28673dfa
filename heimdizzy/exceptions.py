"""Exceptions related to heimdizzy."""

__all__ = [
    "HeimdizzyException",
    "PipelineError",
    "ConfigurationError",
    "CommandException",
    "BuildError",
    "PublishError",
    "HookError",
    "DeploymentError",
    "VerificationError",
    "TransientNotifyError",
    "VcsAdvisoryError",
]


class HeimdizzyException(Exception):
    """Generic base exception used for this library."""


class PipelineError(HeimdizzyException):
    """Raised for any failure that aborts the deployment pipeline."""


class ConfigurationError(PipelineError):
    """Raised when the configuration is missing, invalid or has no matching target."""


class CommandException(PipelineError):
    """Raised when there is a failure running a subcommand."""


class BuildError(PipelineError):
    """Raised when building an artifact or container image fails."""


class PublishError(PipelineError):
    """Raised when uploading an artifact to object storage fails."""


class HookError(PipelineError):
    """Raised when a user defined hook command fails."""

    def __init__(self, name: str, command: str, detail: str | None) -> None:
        super().__init__(f"Hook {name} failed: {detail or 'Unknown error'}")
        self.name = name
        self.command = command
        self.detail = detail


class DeploymentError(PipelineError):
    """Raised when a deployment strategy fails to apply the artifact."""


class VerificationError(DeploymentError):
    """Raised when a post-deploy check fails after the changes were already made."""


class TransientNotifyError(HeimdizzyException):
    """Raised when a notification could not be delivered; never fatal."""


class VcsAdvisoryError(HeimdizzyException):
    """Raised when committing or pushing a manifest change fails; never fatal."""
