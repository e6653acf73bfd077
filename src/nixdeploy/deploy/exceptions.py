"""
Deployment exceptions.

Every fatal stage failure derives from DeploymentError. Failures before
activation leave the live profile untouched; ActivationError records whether
the profile pointer had already moved. Cleanup-stage problems derive from
CleanupError and are collected, never propagated.
"""

from typing import Optional


class DeploymentError(Exception):
    """
    Base exception for deploy failures.

    Examples:
        - SSH connection failed
        - Closure copy failed
        - Build failed on deployer or target
    """

    def __init__(self, message: str, context: Optional[str] = None):
        self.message = message
        self.context = context
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format error message with optional context."""
        if self.context:
            return f"{self.message}\nContext: {self.context}"
        return self.message


class ConfigurationError(DeploymentError):
    """Raised when a deploy request or config file is invalid."""
    pass


class RemoteConnectionError(DeploymentError):
    """Raised when the SSH channel cannot be established (or drops)."""
    pass


class RemoteCommandError(DeploymentError):
    """
    Raised when a checked remote command exits non-zero.

    Attributes:
        result: The CommandResult of the failed command
    """

    def __init__(self, result, context: Optional[str] = None):
        self.result = result
        stderr = (result.stderr or "").strip()
        message = f"Remote command failed with exit code {result.returncode}: {result.command_line}"
        if stderr:
            message += f"\n{stderr[-2000:]}"
        super().__init__(message, context)


class TransferError(DeploymentError):
    """Raised when a file upload or closure copy to the target fails."""
    pass


class BuildError(DeploymentError):
    """Raised when realizing the build plan fails (locally or on the target)."""
    pass


class UnpackError(DeploymentError):
    """Raised when unpacking the secret bundle on the target fails."""
    pass


class EvaluationError(DeploymentError):
    """Raised when instantiating the NixOS configuration fails."""
    pass


class ActivationError(DeploymentError):
    """
    Raised when pointing the profile or switching to the configuration fails.

    Attributes:
        partially_applied: True when the profile already points at the new
            output path but the activation entrypoint failed. The system may
            be running a mix of old and new state and is not rolled back.
    """

    def __init__(self, message: str, partially_applied: bool, context: Optional[str] = None):
        self.partially_applied = partially_applied
        super().__init__(message, context)


class CleanupError(Exception):
    """
    Base class for problems in the post-activation cleanup stage.

    Note: these never escape prune(); they are logged and recorded in
    CleanupResult.errors, because activation has already succeeded.
    """
    pass


class PruneWarning(CleanupError):
    """Deleting old profile generations failed."""
    pass


class GCWarning(CleanupError):
    """Running the store garbage collector failed."""
    pass
