"""Deploy using the positional invocation contract.

    nixdeploy deploy-positional <drvPath> <outPath> <user@host> <port>
        <buildOnTarget> <packedKeysJson> <action> <deleteOlderThan>
        <performGC> <verbose> [<build-opts>...]

Booleans are the literals true/false. The SSH private key is read from
$NIXDEPLOY_SSH_PRIVATE_KEY ("-" or unset for none).
"""
import argparse

from nixdeploy.core import ConsoleLogger, SystemEnvironmentProvider
from nixdeploy.deploy import ConfigurationError, RequestFactory
from nixdeploy.deploy.base import HostKeyPolicy
from nixdeploy.deploy.factory import POSITIONAL_FIELDS
from nixdeploy.commands.deploy import EXIT_FAILURE, SSH_KEY_ENV, run_deploy


def setup_parser(parser):
    """Setup argument parser for deploy-positional command"""
    parser.add_argument(
        '--host-key-policy',
        choices=[p.value for p in HostKeyPolicy],
        default=HostKeyPolicy.INSECURE.value,
        help='Host key verification (default: insecure, no verification)'
    )
    parser.add_argument(
        'arguments',
        nargs=argparse.REMAINDER,
        metavar='ARG',
        help=' '.join(f'<{name}>' for name in POSITIONAL_FIELDS) + ' [build options...]'
    )


def execute(args):
    """Execute deploy-positional command"""
    environ = SystemEnvironmentProvider().get_environ()
    logger = ConsoleLogger()

    try:
        request = RequestFactory.from_positional(
            args.arguments,
            ssh_private_key=environ.get(SSH_KEY_ENV),
            host_key_policy=HostKeyPolicy(args.host_key_policy)
        )
    except ConfigurationError as e:
        logger.error(str(e))
        return EXIT_FAILURE

    logger.verbose = request.verbose
    return run_deploy(request, logger)
