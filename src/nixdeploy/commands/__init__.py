"""CLI subcommands: each module exposes setup_parser(parser) and execute(args)."""
