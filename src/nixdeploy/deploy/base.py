"""
Deploy data model.

Types shared by every stage: the target address, the immutable deploy
request, the build strategy and the result types returned to callers.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from collections.abc import Mapping
from typing import Any, Optional, Tuple

from .exceptions import ConfigurationError

DEFAULT_PROFILE = "/nix/var/nix/profiles/system"
DEFAULT_SSH_PORT = 22
DEFAULT_SSH_USER = "root"
DEFAULT_RETENTION_POLICY = "+1"


class ActivationAction(str, Enum):
    """Verbs accepted by switch-to-configuration."""
    SWITCH = "switch"
    BOOT = "boot"
    TEST = "test"
    DRY_ACTIVATE = "dry-activate"

    @classmethod
    def parse(cls, value: str) -> "ActivationAction":
        try:
            return cls(value)
        except ValueError:
            choices = ", ".join(a.value for a in cls)
            raise ConfigurationError(
                f"Unknown activation action: {value!r}",
                context=f"Expected one of: {choices}"
            )


class HostKeyPolicy(str, Enum):
    """
    How the SSH client treats the target's host key.

    INSECURE disables verification entirely (no known_hosts, no TOFU); trust
    in the address rests with whoever supplies it. ACCEPT_NEW and STRICT hand
    verification back to OpenSSH.
    """
    INSECURE = "insecure"
    ACCEPT_NEW = "accept-new"
    STRICT = "strict"

    @classmethod
    def parse(cls, value: str) -> "HostKeyPolicy":
        try:
            return cls(value)
        except ValueError:
            choices = ", ".join(p.value for p in cls)
            raise ConfigurationError(
                f"Unknown host key policy: {value!r}",
                context=f"Expected one of: {choices}"
            )

    def ssh_options(self) -> list[str]:
        """Return the ``-o`` options implementing this policy."""
        if self is HostKeyPolicy.INSECURE:
            return [
                "-o", "StrictHostKeyChecking=no",
                "-o", "UserKnownHostsFile=/dev/null",
                "-o", "GlobalKnownHostsFile=/dev/null",
            ]
        if self is HostKeyPolicy.ACCEPT_NEW:
            return ["-o", "StrictHostKeyChecking=accept-new"]
        return ["-o", "StrictHostKeyChecking=yes"]


class BuildStrategy(str, Enum):
    """Where the build plan gets realized."""
    BUILD_ON_DEPLOYER = "build-on-deployer"
    BUILD_ON_TARGET = "build-on-target"


@dataclass(frozen=True)
class TargetAddress:
    """SSH endpoint of the host being deployed to."""
    host: str
    user: str = DEFAULT_SSH_USER
    port: int = DEFAULT_SSH_PORT

    def __post_init__(self):
        if not self.host:
            raise ConfigurationError("Target host must not be empty")
        if not 1 <= int(self.port) <= 65535:
            raise ConfigurationError(f"Invalid SSH port: {self.port}")

    @property
    def destination(self) -> str:
        """Get SSH destination string (user@host)."""
        return f"{self.user}@{self.host}"

    def __str__(self) -> str:
        return f"{self.destination}:{self.port}"


class SecretBundle(Mapping):
    """
    Ordered, read-only mapping of key filename to secret content.

    Filenames are flat: the transport has no directories, and the unpack
    helper places every entry under the same keys directory.
    """

    def __init__(self, entries: Optional[Mapping[str, str]] = None):
        entries = dict(entries or {})
        for name, content in entries.items():
            if not isinstance(name, str) or not name or name in (".", ".."):
                raise ConfigurationError(f"Invalid secret filename: {name!r}")
            if "/" in name or "\0" in name:
                raise ConfigurationError(
                    f"Invalid secret filename: {name!r}",
                    context="Secret names must not contain path separators"
                )
            if not isinstance(content, str):
                raise ConfigurationError(f"Secret {name!r} must be a string")
        self._entries = entries

    @classmethod
    def from_json(cls, packed: str) -> "SecretBundle":
        """Parse the packed-keys wire format (a flat JSON object)."""
        if not packed or not packed.strip():
            return cls()
        try:
            data = json.loads(packed)
        except json.JSONDecodeError as e:
            raise ConfigurationError("Secret bundle is not valid JSON", context=str(e))
        if not isinstance(data, dict):
            raise ConfigurationError("Secret bundle must be a JSON object")
        return cls(data)

    def to_json(self) -> str:
        """Serialize to the packed-keys wire format."""
        return json.dumps(self._entries)

    def __getitem__(self, key: str) -> str:
        return self._entries[key]

    def __iter__(self):
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        # Never render secret content
        return f"SecretBundle(keys={list(self._entries)})"


@dataclass(frozen=True)
class DeployRequest:
    """
    Everything one deploy invocation needs, validated once.

    Attributes:
        build_plan: Derivation path (e.g. "/nix/store/...-nixos-system.drv")
        output_path: Output path the evaluator expects the plan to produce
        target: SSH endpoint
        build_on_target: Prefer building on the target (forced when the
            deployer cannot build for the target's system)
        secrets: Key files to provision before activation
        action: switch-to-configuration verb
        retention_policy: nix-env --delete-generations argument(s)
        perform_gc: Run nix-store --gc after pruning
        extra_build_options: Pass-through nix-store options, in order
        verbose: Verbose ssh and debug logging
        profile: System profile to repoint
        target_system: Nix system string of the target, if known
        local_system: Nix system string of the deployer, if known
        host_key_policy: SSH host key trust policy
        ssh_private_key: Private key material (not a path), if any
    """
    build_plan: str
    output_path: str
    target: TargetAddress
    build_on_target: bool = False
    secrets: SecretBundle = field(default_factory=SecretBundle)
    action: ActivationAction = ActivationAction.SWITCH
    retention_policy: str = DEFAULT_RETENTION_POLICY
    perform_gc: bool = True
    extra_build_options: Tuple[str, ...] = ()
    verbose: bool = False
    profile: str = DEFAULT_PROFILE
    target_system: Optional[str] = None
    local_system: Optional[str] = None
    host_key_policy: HostKeyPolicy = HostKeyPolicy.INSECURE
    ssh_private_key: Optional[str] = field(default=None, repr=False)

    def __post_init__(self):
        if not self.build_plan.endswith(".drv"):
            raise ConfigurationError(
                f"Build plan must be a derivation path: {self.build_plan!r}"
            )
        if not self.output_path:
            raise ConfigurationError("Output path must not be empty")
        if not self.profile.startswith("/"):
            raise ConfigurationError(f"Profile must be an absolute path: {self.profile!r}")
        if not isinstance(self.action, ActivationAction):
            object.__setattr__(self, "action", ActivationAction.parse(self.action))
        if not isinstance(self.host_key_policy, HostKeyPolicy):
            object.__setattr__(self, "host_key_policy", HostKeyPolicy.parse(self.host_key_policy))
        if not isinstance(self.secrets, SecretBundle):
            object.__setattr__(self, "secrets", SecretBundle(self.secrets))
        object.__setattr__(self, "extra_build_options", tuple(self.extra_build_options))


@dataclass
class CleanupResult:
    """
    Result of a best-effort cleanup operation.

    Attributes:
        success: Whether cleanup succeeded
        errors: List of non-fatal issues encountered during cleanup
    """
    success: bool
    errors: list[str]


@dataclass
class DeploymentResult:
    """
    Result of a successful deploy. Failures raise instead of returning one.

    Attributes:
        success: Always True
        deploy_id: Stable identifier of what is now active (the output path)
        output_path: Activated output path
        strategy: Build strategy that was used
        target: Host that was deployed to
        cleanup: Outcome of generation pruning / GC
        metadata: Deployer and target systems, action, profile and the
            names of the provisioned secrets
    """
    success: bool
    deploy_id: str
    output_path: str
    strategy: BuildStrategy
    target: TargetAddress
    cleanup: CleanupResult
    metadata: dict[str, Any] = field(default_factory=dict)

