"""Deploy a NixOS system to a remote host.

Builds a DeployRequest from flags, an optional YAML deploy profile and an
optional NixOS configuration (evaluated first), then runs NixosDeployer.
"""
import os
import signal
from contextlib import contextmanager
from typing import Optional

from nixdeploy.core import (
    Logger,
    ConsoleLogger,
    RealFileSystemService,
    SubprocessExecutor,
    SystemEnvironmentProvider,
    YamlConfigLoader,
)
from nixdeploy.deploy import (
    ActivationError,
    DeployRequest,
    DeploymentError,
    EvaluationInputs,
    EvaluationResult,
    NixInstantiateEvaluator,
    NixosDeployer,
    RequestFactory,
    SecretBundle,
    detect_local_system,
)
from nixdeploy.deploy.base import ActivationAction, HostKeyPolicy
from nixdeploy.utils.config import load_deploy_config, resolve_settings

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_PARTIAL_ACTIVATION = 3

SSH_KEY_ENV = 'NIXDEPLOY_SSH_PRIVATE_KEY'


def setup_parser(parser):
    """Setup argument parser for deploy command"""
    parser.add_argument(
        '--config',
        help='YAML deploy profile (flags override its values)'
    )
    parser.add_argument(
        '--nixos-config',
        help='Evaluate this NixOS configuration instead of passing --drv-path/--out-path'
    )
    parser.add_argument(
        '--nix-path',
        help='NIX_PATH to evaluate --nixos-config with'
    )
    parser.add_argument(
        '--drv-path',
        help='Derivation of the system to deploy'
    )
    parser.add_argument(
        '--out-path',
        help='Output path the derivation produces'
    )
    parser.add_argument(
        '--target',
        help='Target host: [user@]host[:port] (IPv6 as user@[addr]:port)'
    )
    parser.add_argument(
        '--port',
        type=int,
        help='SSH port (overrides a port given in --target)'
    )
    parser.add_argument(
        '--target-system',
        help='Nix system of the target, e.g. aarch64-linux'
    )
    parser.add_argument(
        '--build-on-target',
        action='store_true',
        default=None,
        help='Build on the target even if the deployer could build'
    )
    parser.add_argument(
        '--secrets-file',
        help='JSON object of key name -> content, unpacked to /var/keys'
    )
    parser.add_argument(
        '--action',
        choices=[a.value for a in ActivationAction],
        help='switch-to-configuration action (default: switch)'
    )
    parser.add_argument(
        '--delete-older-than',
        help='Generations to delete after activation: +N, Nd, old, or numbers (default: +1)'
    )
    parser.add_argument(
        '--no-gc',
        dest='gc',
        action='store_false',
        default=None,
        help='Skip nix-store --gc after pruning'
    )
    parser.add_argument(
        '--profile',
        help='System profile to repoint (default: /nix/var/nix/profiles/system)'
    )
    parser.add_argument(
        '--host-key-policy',
        choices=[p.value for p in HostKeyPolicy],
        help='Host key verification (default: insecure, no verification)'
    )
    parser.add_argument(
        '--ssh-private-key-file',
        help=f'Private key to authenticate with (or set ${SSH_KEY_ENV})'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        default=None,
        help='Verbose ssh and command output'
    )
    parser.add_argument(
        'build_options',
        nargs='*',
        help='Extra nix-store options, after --'
    )


@contextmanager
def terminate_as_interrupt():
    """Turn SIGTERM into KeyboardInterrupt so session teardown still runs."""
    def _handler(signum, frame):
        raise KeyboardInterrupt(f"received signal {signum}")

    previous = signal.signal(signal.SIGTERM, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


def run_deploy(
    request: DeployRequest,
    logger: Logger,
    evaluation: Optional[EvaluationResult] = None,
    deployer: Optional[NixosDeployer] = None
) -> int:
    """Run a deploy and map its outcome onto an exit code.

    On success the deploy id is printed on stdout; everything else goes to
    stderr through the logger.
    """
    if deployer is None:
        deployer = NixosDeployer(
            process_executor=SubprocessExecutor(),
            filesystem=RealFileSystemService(),
            env_provider=SystemEnvironmentProvider(),
            logger=logger
        )

    try:
        with terminate_as_interrupt():
            result = deployer.deploy(request, evaluation)
    except ActivationError as e:
        if e.partially_applied:
            logger.error("=" * 80)
            logger.error("ACTIVATION PARTIALLY APPLIED")
            logger.error(str(e))
            logger.error(f"{request.profile} on {request.target} points at the new system, "
                         f"but activation did not complete.")
            logger.error("Manual remediation may be required (no automatic rollback).")
            logger.error("=" * 80)
            return EXIT_PARTIAL_ACTIVATION
        logger.error(str(e))
        return EXIT_FAILURE
    except DeploymentError as e:
        logger.error(str(e))
        return EXIT_FAILURE

    for problem in result.cleanup.errors:
        logger.warning(f"cleanup: {problem}")

    logger.info(f"deployed {result.output_path} to {result.target} ({result.strategy.value})")
    print(result.deploy_id)
    return EXIT_OK


def read_private_key(path: Optional[str], filesystem, environ) -> Optional[str]:
    """Key material from a file, else from the environment; "-" means none."""
    if path:
        return filesystem.read_file(os.path.expanduser(path))
    key = environ.get(SSH_KEY_ENV)
    if not key or key == '-':
        return None
    return key


def build_request(args, settings, filesystem, environ,
                  evaluation: Optional[EvaluationResult] = None) -> DeployRequest:
    """Assemble a validated DeployRequest from resolved settings."""
    if not settings.get('target'):
        raise DeploymentError("No target given", context="Use --target or set 'target' in --config")

    drv_path = args.drv_path or (evaluation.drv_path if evaluation else None)
    out_path = args.out_path or (evaluation.out_path if evaluation else None)
    if not drv_path or not out_path:
        raise DeploymentError(
            "Nothing to deploy",
            context="Pass --drv-path and --out-path, or --nixos-config"
        )

    secrets = SecretBundle()
    if args.secrets_file:
        secrets = SecretBundle.from_json(filesystem.read_file(args.secrets_file))

    return DeployRequest(
        build_plan=drv_path,
        output_path=out_path,
        target=RequestFactory.parse_target(settings['target'], port=settings.get('port')),
        build_on_target=bool(settings['build_on_target']),
        secrets=secrets,
        action=settings['action'],
        retention_policy=settings['delete_older_than'] or '',
        perform_gc=bool(settings['gc']),
        extra_build_options=tuple(settings['build_options']),
        verbose=bool(settings['verbose']),
        profile=settings['profile'],
        target_system=settings.get('target_system'),
        local_system=evaluation.current_system if evaluation else None,
        host_key_policy=settings['host_key_policy'],
        ssh_private_key=read_private_key(settings.get('ssh_private_key_file'), filesystem, environ),
    )


def execute(args):
    """Execute deploy command"""
    filesystem = RealFileSystemService()
    env_provider = SystemEnvironmentProvider()
    logger = ConsoleLogger(verbose=bool(args.verbose))

    try:
        file_settings = {}
        if args.config:
            file_settings = load_deploy_config(args.config, YamlConfigLoader(filesystem))

        settings = resolve_settings(file_settings, {
            'target': args.target,
            'port': args.port,
            'build_on_target': args.build_on_target,
            'action': args.action,
            'delete_older_than': args.delete_older_than,
            'gc': args.gc,
            'profile': args.profile,
            'target_system': args.target_system,
            'host_key_policy': args.host_key_policy,
            'ssh_private_key_file': args.ssh_private_key_file,
            'build_options': args.build_options,
            'verbose': args.verbose,
        })
        logger.verbose = bool(settings['verbose'])

        evaluation = None
        if args.nixos_config:
            evaluation = NixInstantiateEvaluator(SubprocessExecutor(), logger).evaluate(
                EvaluationInputs(
                    config=args.nixos_config,
                    target_system=settings['target_system'] or detect_local_system(env_provider),
                    nix_path=args.nix_path,
                )
            )

        request = build_request(args, settings, filesystem, env_provider.get_environ(), evaluation)
    except DeploymentError as e:
        logger.error(str(e))
        return EXIT_FAILURE
    except OSError as e:
        logger.error(f"{e}")
        return EXIT_FAILURE

    return run_deploy(request, logger, evaluation)

