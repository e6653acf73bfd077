"""
NixosDeployer - Sequences one deploy over a single SSH session.

Stages (strictly in order, each depending on the previous one's remote
side effects):
    1. open session (control master, scratch dirs)
    2. provision secrets
    3. select build strategy
    4. transfer (build + closure copy)
    5. activate (profile --set, switch-to-configuration)
    6. prune generations / GC (best effort)
    7. close session (always, exactly once)
"""

from typing import Callable, List, Optional

from nixdeploy.core.protocols import (
    EnvironmentProvider,
    FileSystemService,
    Logger,
    ProcessExecutor,
)
from .activation import Activator
from .base import DeployRequest, DeploymentResult
from .evaluator import EvaluationResult
from .retention import GenerationPruner
from .secrets import SecretProvisioner
from .session import SSHSession
from .strategy import detect_local_system, select_strategy
from .transfer import DEFAULT_BUILD_OPTIONS, ArtifactTransfer

SessionFactory = Callable[..., SSHSession]


def assemble_build_options(
    request: DeployRequest,
    evaluation: Optional[EvaluationResult] = None
) -> List[str]:
    """Default caches, then the configuration's trust settings, then pass-through options."""
    options = list(DEFAULT_BUILD_OPTIONS)
    if evaluation is not None:
        options += evaluation.trust_build_options()
    options += list(request.extra_build_options)
    return options


class NixosDeployer:
    """
    Deploys a NixOS system closure to one host.

    Args:
        process_executor: Runs local processes (ssh, nix-store, ...)
        filesystem: Local filesystem abstraction
        env_provider: Used to detect the deployer's system
        logger: Logging abstraction
        session_factory: Creates the SSH session (SSHSession by default)
    """

    def __init__(
        self,
        process_executor: ProcessExecutor,
        filesystem: FileSystemService,
        env_provider: EnvironmentProvider,
        logger: Logger,
        session_factory: SessionFactory = SSHSession
    ):
        self.process = process_executor
        self.fs = filesystem
        self.env = env_provider
        self.log = logger
        self.session_factory = session_factory

    def _local_system(self, request: DeployRequest, evaluation: Optional[EvaluationResult]) -> str:
        if request.local_system:
            return request.local_system
        if evaluation is not None:
            return evaluation.current_system
        return detect_local_system(self.env)

    def deploy(
        self,
        request: DeployRequest,
        evaluation: Optional[EvaluationResult] = None
    ) -> DeploymentResult:
        """
        Run every stage of the deploy.

        Args:
            request: Validated deploy request
            evaluation: Evaluator output, if the request came from one; its
                binary caches are trusted for the build

        Returns:
            DeploymentResult whose deploy_id is the activated output path

        Raises:
            RemoteConnectionError: SSH channel could not be set up
            UnpackError, TransferError, BuildError: Fatal, before activation
            ActivationError: Activation failed (see partially_applied)

        Postconditions:
            - The SSH session is closed on every exit path
            - Pruning only ran if activation succeeded
        """
        build_options = assemble_build_options(request, evaluation)
        local_system = self._local_system(request, evaluation)

        session = self.session_factory(
            request.target,
            self.process,
            self.fs,
            self.log,
            host_key_policy=request.host_key_policy,
            ssh_private_key=request.ssh_private_key,
            verbose=request.verbose
        )

        with session:
            SecretProvisioner(session, self.log).provision(request.secrets)

            strategy = select_strategy(local_system, request.target_system, request.build_on_target)
            self.log.debug(
                f"strategy {strategy.value} (deployer {local_system}, "
                f"target {request.target_system or 'unknown'})"
            )

            output_path = ArtifactTransfer(session, self.process, self.log).transfer(
                strategy,
                request.build_plan,
                request.output_path,
                build_options
            )

            Activator(session, self.log).activate(output_path, request.profile, request.action)

            cleanup = GenerationPruner(session, self.log).prune(
                request.profile,
                request.retention_policy,
                request.perform_gc
            )

        return DeploymentResult(
            success=True,
            deploy_id=output_path,
            output_path=output_path,
            strategy=strategy,
            target=request.target,
            cleanup=cleanup,
            metadata={
                "local_system": local_system,
                "target_system": request.target_system,
                "action": request.action.value,
                "profile": request.profile,
                "secrets": list(request.secrets),
            }
        )
