"""
nixdeploy - Deploy NixOS systems to remote hosts over SSH

A command-line interface that ships a built (or buildable) system closure to
a host, provisions its keys, activates it and prunes old generations.
"""
import argparse
import sys

__version__ = "1.0.0"


def main():
    """Main CLI entry point"""
    from nixdeploy.commands import deploy, deploy_positional, evaluate

    parser = argparse.ArgumentParser(
        prog='nixdeploy',
        description='nixdeploy: deploy NixOS systems over SSH',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  nixdeploy deploy --nixos-config ./configuration.nix --target root@web1
  nixdeploy deploy --config web1.yaml --drv-path /nix/store/...drv --out-path /nix/store/...
  nixdeploy deploy --target root@[fe80::1]:2222 --drv-path ... --out-path ... -- --cores 4
  nixdeploy deploy-positional <drv> <out> root@web1 22 false '{}' switch +1 true false
  nixdeploy evaluate --config ./configuration.nix --target-system aarch64-linux
        '''
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    # Deploy command
    deploy_parser = subparsers.add_parser('deploy', help='Deploy a system to a host')
    deploy.setup_parser(deploy_parser)

    # Positional deploy command
    positional_parser = subparsers.add_parser(
        'deploy-positional',
        help='Deploy using positional arguments'
    )
    deploy_positional.setup_parser(positional_parser)

    # Evaluate command
    evaluate_parser = subparsers.add_parser('evaluate', help='Evaluate a NixOS configuration')
    evaluate.setup_parser(evaluate_parser)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Dispatch to command handler
    try:
        if args.command == 'deploy':
            sys.exit(deploy.execute(args))
        elif args.command == 'deploy-positional':
            sys.exit(deploy_positional.execute(args))
        elif args.command == 'evaluate':
            sys.exit(evaluate.execute(args))
    except KeyboardInterrupt:
        print("\n\nInterrupted by user", file=sys.stderr)
        sys.exit(130)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        sys.exit(1)
