"""
Request factory - Parse target strings and positional invocations.

Target formats:
    host                   → root@host:22
    user@host              → user@host:22
    user@host:2222         → custom SSH port
    user@[fe80::1]         → IPv6
    user@[fe80::1]:2222    → IPv6 with custom SSH port

Positional invocation (order-significant):
    <drvPath> <outPath> <user@host> <port> <buildOnTarget> <packedKeysJson>
    <action> <deleteOlderThan> <performGC> <verbose> [<build-opts>...]
"""

from typing import Optional, Sequence

from .base import (
    DEFAULT_SSH_PORT,
    DEFAULT_SSH_USER,
    ActivationAction,
    DeployRequest,
    HostKeyPolicy,
    SecretBundle,
    TargetAddress,
)
from .exceptions import ConfigurationError

POSITIONAL_FIELDS = (
    "drv_path",
    "out_path",
    "target",
    "port",
    "build_on_target",
    "packed_keys_json",
    "action",
    "delete_older_than",
    "perform_gc",
    "verbose",
)


def parse_bool(value: str, name: str) -> bool:
    """Parse the literal ``true``/``false`` tokens used on the command line."""
    lowered = str(value).strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    raise ConfigurationError(f"{name} must be 'true' or 'false', got {value!r}")


def parse_port(value, name: str = "port") -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid {name}: {value!r}")


class RequestFactory:
    """Builds TargetAddress and DeployRequest values from user input."""

    @staticmethod
    def parse_target(target: str, port: Optional[int] = None) -> TargetAddress:
        """
        Parse a target string into a TargetAddress.

        Args:
            target: ``[user@]host[:port]`` (IPv6 hosts in brackets)
            port: Explicit port; overrides any port embedded in target

        Raises:
            ConfigurationError: If format not recognized

        Example:
            RequestFactory.parse_target("deploy@[fe80::1]:2222")
            # TargetAddress(host="fe80::1", user="deploy", port=2222)
        """
        if not target:
            raise ConfigurationError("Target must not be empty")

        if '@' in target:
            user, host_part = target.split('@', 1)
            if not user:
                raise ConfigurationError(f"Malformed target (empty user): {target}")
        else:
            user, host_part = DEFAULT_SSH_USER, target

        embedded_port = DEFAULT_SSH_PORT
        if host_part.startswith('['):
            # IPv6: user@[fe80::1] or user@[fe80::1]:2222
            bracket_end = host_part.find(']')
            if bracket_end == -1:
                raise ConfigurationError(f"Malformed IPv6 address: {target}")
            host = host_part[1:bracket_end]
            remainder = host_part[bracket_end + 1:]
            if remainder.startswith(':'):
                embedded_port = parse_port(remainder[1:])
            elif remainder:
                raise ConfigurationError(f"Malformed target: {target}")
        elif host_part.count(':') == 1:
            host, port_str = host_part.rsplit(':', 1)
            embedded_port = parse_port(port_str)
        elif host_part.count(':') > 1:
            # Bare IPv6 without brackets, no port possible
            host = host_part
        else:
            host = host_part

        return TargetAddress(
            host=host,
            user=user,
            port=port if port is not None else embedded_port
        )

    @staticmethod
    def from_positional(
        argv: Sequence[str],
        ssh_private_key: Optional[str] = None,
        host_key_policy: HostKeyPolicy = HostKeyPolicy.INSECURE
    ) -> DeployRequest:
        """
        Map the positional invocation contract onto a DeployRequest.

        Everything after the tenth argument is passed through to nix-store
        as build options, in order.

        Raises:
            ConfigurationError: If arguments are missing or malformed
        """
        if len(argv) < len(POSITIONAL_FIELDS):
            missing = ", ".join(POSITIONAL_FIELDS[len(argv):])
            raise ConfigurationError(
                f"Expected at least {len(POSITIONAL_FIELDS)} positional arguments, got {len(argv)}",
                context=f"Missing: {missing}"
            )

        values = dict(zip(POSITIONAL_FIELDS, argv))
        build_options = tuple(argv[len(POSITIONAL_FIELDS):])

        if ssh_private_key == "-":
            ssh_private_key = None

        return DeployRequest(
            build_plan=values["drv_path"],
            output_path=values["out_path"],
            target=RequestFactory.parse_target(
                values["target"], port=parse_port(values["port"], "target port")
            ),
            build_on_target=parse_bool(values["build_on_target"], "buildOnTarget"),
            secrets=SecretBundle.from_json(values["packed_keys_json"]),
            action=ActivationAction.parse(values["action"]),
            retention_policy=values["delete_older_than"],
            perform_gc=parse_bool(values["perform_gc"], "performGC"),
            extra_build_options=build_options,
            verbose=parse_bool(values["verbose"], "verbose"),
            host_key_policy=host_key_policy,
            ssh_private_key=ssh_private_key or None,
        )
