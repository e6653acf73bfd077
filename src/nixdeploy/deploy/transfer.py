"""
Artifact transfer - get a realized system closure onto the target.

Strategies:
    BUILD_ON_TARGET:   copy the derivation closure → nix-store --realize remotely
    BUILD_ON_DEPLOYER: nix-store --realize locally → copy the output closure

Both strategies end with the output path present in the target's store.
Nothing here touches the target's profiles.
"""

from typing import Optional, Sequence

from nixdeploy.core.protocols import Logger, ProcessExecutor
from .base import BuildStrategy
from .exceptions import BuildError, RemoteCommandError, TransferError
from .session import SSHSession

DEFAULT_BUILD_OPTIONS = (
    "--option", "extra-binary-caches", "https://cache.nixos.org/",
)

COPY_CLOSURE_FLAGS = ("--gzip", "--use-substitutes")


def last_store_path(stdout: str) -> Optional[str]:
    """Return the last non-empty line of nix-store --realize output."""
    lines = [line.strip() for line in stdout.splitlines() if line.strip()]
    return lines[-1] if lines else None


class ArtifactTransfer:
    """Realizes the build plan and moves its closure to the target."""

    def __init__(self, session: SSHSession, process_executor: ProcessExecutor, logger: Logger):
        self.session = session
        self.process = process_executor
        self.log = logger

    def copy_closure(self, store_path: str) -> None:
        """
        Copy store_path and any missing dependencies to the target.

        Raises:
            TransferError: If nix-copy-closure fails
        """
        cmd = ["nix-copy-closure", "--to", self.session.destination, store_path, *COPY_CLOSURE_FLAGS]
        self.log.debug(" ".join(cmd))
        result = self.process.run(cmd, extra_env=self.session.transport_env())
        if result.returncode != 0:
            raise TransferError(
                f"Copying {store_path} to {self.session.target} failed",
                context=(result.stderr or "").strip()[-2000:] or None
            )

    def realize_locally(self, build_plan: str, build_options: Sequence[str]) -> str:
        """
        Build the plan on the deployer.

        Raises:
            BuildError: If the build fails or produces no output path
        """
        cmd = ["nix-store", "--realize", build_plan, *build_options]
        self.log.debug(" ".join(cmd))
        result = self.process.run(cmd)
        if result.returncode != 0:
            raise BuildError(
                f"Building {build_plan} on the deployer failed",
                context=(result.stderr or "").strip()[-2000:] or None
            )
        output_path = last_store_path(result.stdout)
        if not output_path:
            raise BuildError(f"nix-store --realize {build_plan} reported no output path")
        return output_path

    def realize_on_target(self, build_plan: str, build_options: Sequence[str]) -> Optional[str]:
        """
        Build the plan on the target (the derivation must already be there).

        Raises:
            BuildError: If the remote build fails
        """
        try:
            result = self.session.run(
                ["nix-store", "--realize", build_plan, *build_options],
                privileged=True
            )
        except RemoteCommandError as e:
            raise BuildError(
                f"Building {build_plan} on {self.session.target} failed",
                context=(e.result.stderr or "").strip()[-2000:] or None
            ) from e
        return last_store_path(result.stdout)

    def transfer(
        self,
        strategy: BuildStrategy,
        build_plan: str,
        output_path: str,
        build_options: Sequence[str] = DEFAULT_BUILD_OPTIONS
    ) -> str:
        """
        Make the realized output of build_plan available on the target.

        Args:
            strategy: Where to build
            build_plan: Derivation path
            output_path: Expected output path (used if the remote build does
                not report one)
            build_options: nix-store options (caches, trusted keys, ...)

        Returns:
            Output path now present on the target

        Raises:
            BuildError: If realization fails
            TransferError: If a closure copy fails
        """
        if strategy is BuildStrategy.BUILD_ON_TARGET:
            self.log.info("uploading derivations")
            self.copy_closure(build_plan)

            self.log.info("building on target")
            realized = self.realize_on_target(build_plan, build_options)
            if realized and realized != output_path:
                self.log.debug(f"target realized {realized} (expected {output_path})")
            return realized or output_path

        self.log.info("building on deployer")
        realized = self.realize_locally(build_plan, build_options)

        self.log.info("uploading build results")
        self.copy_closure(realized)
        return realized
