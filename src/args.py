"""Argument parsing functionality for unigate."""

import argparse
from constants import Constants


def _add_common(parser):
    """Options shared by every subcommand."""
    parser.add_argument("-c", "--config",
                        dest="CONFIG",
                        help="Path to platform configuration file (YAML, YML, or JSON)",
                        action="store",
                        type=str)
    parser.add_argument("--loglevel",
                        dest="LOG_LEVEL",
                        help="Set the logging level",
                        action="store",
                        type=str.upper,
                        choices=Constants.LOG_LEVELS,
                        default="INFO")
    parser.add_argument("--logfile",
                        dest="LOG_FILE",
                        help="Log output file",
                        action="store",
                        type=str)


def build_parser():
    """Build the top-level parser with its subcommands."""
    parser = argparse.ArgumentParser(
        prog="unigate",
        description=(
            "unigate - one path namespace in front of many package and artifact registries"
        ),
        add_help=True,
    )
    sub = parser.add_subparsers(dest="COMMAND", metavar="COMMAND")
    sub.required = True

    proxy = sub.add_parser("proxy", help="Run the proxy server")
    _add_common(proxy)
    proxy.add_argument("--host",
                       dest="PROXY_HOST",
                       help=f"Address to bind (default: {Constants.PROXY_HOST})",
                       action="store",
                       type=str,
                       default=Constants.PROXY_HOST)
    proxy.add_argument("--port",
                       dest="PROXY_PORT",
                       help=f"Port to listen on (default: {Constants.PROXY_PORT})",
                       action="store",
                       type=int,
                       default=Constants.PROXY_PORT)
    proxy.add_argument("--timeout",
                       dest="PROXY_TIMEOUT",
                       help=f"Upstream request timeout in seconds (default: {Constants.REQUEST_TIMEOUT})",
                       action="store",
                       type=int,
                       default=Constants.REQUEST_TIMEOUT)
    proxy.add_argument("--allow-external",
                       dest="PROXY_ALLOW_EXTERNAL",
                       help="Allow binding to a non-loopback address.",
                       action="store_true")

    resolve = sub.add_parser("resolve", help="Print the upstream URL for request paths")
    _add_common(resolve)
    resolve.add_argument("PATHS",
                         help="Request path(s), e.g. /gh/owner/repo/archive/main.zip",
                         nargs="+")
    resolve.add_argument("--json",
                         dest="JSON",
                         help="Emit JSON output.",
                         action="store_true")

    platforms = sub.add_parser("platforms", help="List registered platforms")
    _add_common(platforms)
    platforms.add_argument("--json",
                           dest="JSON",
                           help="Emit JSON output.",
                           action="store_true")

    return parser


def parse_args(argv=None):
    """Parses the arguments passed to the program."""
    return build_parser().parse_args(argv)
