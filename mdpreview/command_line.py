import argparse
import logging
import sys

from . import __version__
from .command_registry import registered_commands
from .errors import ConfigError, WatchSubscriptionError

# imported for their @register_command side effects
from . import server, static_build  # noqa: F401

EXAMPLES = """examples:
  mdpreview serve --file README.md --port 3000
  mdpreview watch --dir docs --port 4000
  mdpreview build --file notes.md --out dist
"""


def build_parser():
    parser = argparse.ArgumentParser(
        prog="mdpreview",
        description="Live markdown preview and static HTML builder.",
        epilog=EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Log debug messages"
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    subparsers = parser.add_subparsers(dest="command", metavar="command")
    commands = {}
    for name, spec in registered_commands().items():
        sub = subparsers.add_parser(
            name, help=spec["help"], description=spec["description"]
        )
        for argument in spec["arguments"]:
            sub.add_argument(*argument["flags"], **argument["kwargs"])
        commands[name] = sub
    return parser, commands


def configure_logging(verbose=False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )


def main(argv=None):
    parser, commands = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_usage(sys.stderr)
        print("mdpreview: error: a command is required", file=sys.stderr)
        return 2
    configure_logging(args.verbose)
    spec = registered_commands()[args.command]
    kwargs = {
        argument["dest"]: getattr(args, argument["dest"])
        for argument in spec["arguments"]
    }
    try:
        return spec["handler"](**kwargs) or 0
    except ConfigError as exc:
        # prints the subcommand usage and exits with status 2
        commands[args.command].error(str(exc))
    except WatchSubscriptionError as exc:
        print(f"mdpreview: error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
