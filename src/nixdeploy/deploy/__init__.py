"""
Remote NixOS deployment subsystem.

Deploys a system closure to a host over one multiplexed SSH session:
    - SSHSession: control master, remote commands, uploads
    - SecretProvisioner: key bundle staged before activation
    - select_strategy / ArtifactTransfer: build locally or on the target
    - Activator: profile --set + switch-to-configuration
    - GenerationPruner: retention policy and GC (best effort)
    - NixosDeployer: runs the stages in order

Public API:
    - DeployRequest, TargetAddress, SecretBundle: Inputs
    - DeploymentResult, CleanupResult: Result types
    - RequestFactory: Parse target strings and positional invocations
    - NixInstantiateEvaluator: Turn a configuration into deploy inputs
    - DeploymentError and subclasses: Exceptions
"""

from .base import (
    ActivationAction,
    BuildStrategy,
    CleanupResult,
    DeployRequest,
    DeploymentResult,
    HostKeyPolicy,
    SecretBundle,
    TargetAddress,
)
from .exceptions import (
    ActivationError,
    BuildError,
    CleanupError,
    ConfigurationError,
    DeploymentError,
    EvaluationError,
    GCWarning,
    PruneWarning,
    RemoteCommandError,
    RemoteConnectionError,
    TransferError,
    UnpackError,
)
from .factory import RequestFactory
from .session import SSHSession, CommandResult
from .secrets import SecretProvisioner
from .strategy import select_strategy, detect_local_system
from .transfer import ArtifactTransfer
from .activation import Activator
from .retention import GenerationPruner
from .evaluator import EvaluationInputs, EvaluationResult, NixInstantiateEvaluator
from .orchestrator import NixosDeployer

__all__ = [
    # Types
    "ActivationAction",
    "BuildStrategy",
    "CleanupResult",
    "DeployRequest",
    "DeploymentResult",
    "HostKeyPolicy",
    "SecretBundle",
    "TargetAddress",

    # Factory
    "RequestFactory",

    # Exceptions
    "DeploymentError",
    "ConfigurationError",
    "RemoteConnectionError",
    "RemoteCommandError",
    "TransferError",
    "BuildError",
    "UnpackError",
    "EvaluationError",
    "ActivationError",
    "CleanupError",
    "PruneWarning",
    "GCWarning",

    # Stages
    "SSHSession",
    "CommandResult",
    "SecretProvisioner",
    "select_strategy",
    "detect_local_system",
    "ArtifactTransfer",
    "Activator",
    "GenerationPruner",
    "EvaluationInputs",
    "EvaluationResult",
    "NixInstantiateEvaluator",
    "NixosDeployer",
]
