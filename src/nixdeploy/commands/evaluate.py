"""Evaluate a NixOS configuration and print the deploy inputs as JSON"""
from nixdeploy.core import ConsoleLogger, SubprocessExecutor, SystemEnvironmentProvider
from nixdeploy.deploy import (
    DeploymentError,
    EvaluationInputs,
    NixInstantiateEvaluator,
    detect_local_system,
)


def setup_parser(parser):
    """Setup argument parser for evaluate command"""
    parser.add_argument(
        '--config',
        required=True,
        help='Path to the NixOS configuration'
    )
    parser.add_argument(
        '--config-pwd',
        default='.',
        help='Directory to evaluate from (default: current directory)'
    )
    parser.add_argument(
        '--target-system',
        help='Nix system to evaluate for (default: the deployer\'s system)'
    )
    parser.add_argument(
        '--nix-path',
        help='NIX_PATH override'
    )
    parser.add_argument(
        '--hermetic',
        action='store_true',
        help='Import the configuration directly instead of through <nixpkgs/nixos>'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Show the nix-instantiate invocations'
    )
    parser.add_argument(
        'extra_args',
        nargs='*',
        help='Extra nix-instantiate arguments, after --'
    )


def execute(args):
    """Execute evaluate command"""
    logger = ConsoleLogger(verbose=args.verbose)
    inputs = EvaluationInputs(
        config=args.config,
        config_pwd=args.config_pwd,
        target_system=args.target_system or detect_local_system(SystemEnvironmentProvider()),
        nix_path=args.nix_path,
        hermetic=args.hermetic,
        extra_args=tuple(args.extra_args),
    )

    try:
        result = NixInstantiateEvaluator(SubprocessExecutor(), logger).evaluate(inputs)
    except DeploymentError as e:
        logger.error(str(e))
        return 1

    print(result.to_json())
    return 0
