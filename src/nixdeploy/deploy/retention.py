"""
Generation retention and garbage collection.

Runs only after a successful activation, so nothing here may fail the
deploy: problems are logged and returned in a CleanupResult.
"""

from nixdeploy.core.protocols import Logger
from .base import CleanupResult
from .exceptions import CleanupError, GCWarning, PruneWarning, RemoteCommandError, RemoteConnectionError
from .session import SSHSession


class GenerationPruner:
    """Deletes old profile generations and optionally collects garbage."""

    def __init__(self, session: SSHSession, logger: Logger):
        self.session = session
        self.log = logger

    def delete_generations(self, profile: str, retention_policy: str) -> None:
        """
        Run nix-env --delete-generations with the policy tokens.

        The policy is split on whitespace and otherwise passed through
        untouched ("+5", "30d", "old", or generation numbers "1 2 3"); the
        remote nix-env owns its meaning.

        Raises:
            PruneWarning: If deletion failed
        """
        tokens = retention_policy.split()
        try:
            self.session.run(
                ["nix-env", "--profile", profile, "--delete-generations", *tokens],
                privileged=True
            )
        except (RemoteCommandError, RemoteConnectionError) as e:
            raise PruneWarning(f"Deleting generations ({retention_policy}) of {profile} failed: {e}") from e

    def collect_garbage(self) -> None:
        """
        Run nix-store --gc on the target.

        Raises:
            GCWarning: If garbage collection failed
        """
        try:
            self.session.run(["nix-store", "--gc"], privileged=True)
        except (RemoteCommandError, RemoteConnectionError) as e:
            raise GCWarning(f"Garbage collection failed: {e}") from e

    def prune(self, profile: str, retention_policy: str, perform_gc: bool) -> CleanupResult:
        """
        Apply the retention policy, then GC if requested.

        Returns:
            CleanupResult(success=True, errors=[]) when everything ran

        Note:
            Never raises exceptions for remote failures. All errors are
            captured in result.errors.
        """
        errors = []

        if retention_policy and retention_policy.strip():
            self.log.info("collecting old nix derivations")
            try:
                self.delete_generations(profile, retention_policy)
            except CleanupError as e:
                self.log.warning(str(e))
                errors.append(str(e))
        else:
            self.log.debug("no retention policy, keeping all generations")

        if perform_gc:
            self.log.info("running garbage collection")
            try:
                self.collect_garbage()
            except CleanupError as e:
                self.log.warning(str(e))
                errors.append(str(e))

        return CleanupResult(success=len(errors) == 0, errors=errors)
