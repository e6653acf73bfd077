"""Build strategy selection."""

from typing import Optional

from nixdeploy.core.protocols import EnvironmentProvider
from .base import BuildStrategy

# platform.machine() spellings that differ from Nix's
_MACHINE_ALIASES = {
    "amd64": "x86_64",
    "arm64": "aarch64",
    "i386": "i686",
}


def select_strategy(
    local_system: Optional[str],
    target_system: Optional[str],
    build_on_target: bool = False
) -> BuildStrategy:
    """
    Decide where the build plan gets realized.

    The deployer cannot realize a system for a different platform, so a
    platform mismatch forces building on the target regardless of the flag.
    When either side is unknown the systems are assumed to match.

    Args:
        local_system: Nix system of the deployer (e.g. "x86_64-linux")
        target_system: Nix system of the target
        build_on_target: Explicit preference

    Returns:
        BuildStrategy.BUILD_ON_TARGET or BuildStrategy.BUILD_ON_DEPLOYER
    """
    if local_system and target_system and local_system != target_system:
        return BuildStrategy.BUILD_ON_TARGET
    if build_on_target:
        return BuildStrategy.BUILD_ON_TARGET
    return BuildStrategy.BUILD_ON_DEPLOYER


def detect_local_system(env: EnvironmentProvider) -> str:
    """Nix system string of the machine running the deploy."""
    machine = env.get_machine().lower()
    machine = _MACHINE_ALIASES.get(machine, machine)
    return f"{machine}-{env.get_system_type().lower()}"
