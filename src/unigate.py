"""unigate: a single path namespace in front of many package registries.

Dispatches the ``proxy``, ``resolve`` and ``platforms`` subcommands.
"""

import logging
import sys

from args import parse_args
from cli_proxy import setup_logging, run_proxy_server
from cli_platforms import resolve_paths, list_platforms
from common.logging_utils import extra_context, is_debug_enabled
from constants import ExitCodes

COMMANDS = {
    "proxy": run_proxy_server,
    "resolve": resolve_paths,
    "platforms": list_platforms,
}


def main(argv=None):
    """Main function of the program."""
    logger = logging.getLogger(__name__)

    args = parse_args(argv)
    setup_logging(args)

    if is_debug_enabled(logger):
        logger.debug(
            "CLI start",
            extra=extra_context(
                event="function_entry",
                component="cli",
                action="main",
                target=args.COMMAND,
            ),
        )

    COMMANDS[args.COMMAND](args)
    sys.exit(ExitCodes.SUCCESS.value)


if __name__ == "__main__":
    main()
