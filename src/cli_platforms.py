"""CLI commands that inspect the platform table without starting a server."""

import json
import logging
import sys

from constants import ExitCodes
from cli_config import rewriter_from_args
from proxy.request_parser import RequestParser


def resolve_paths(args):
    """Print the upstream URL for each path given on the command line.

    Exits with FILE_ERROR when any path does not name a known platform.
    """
    rewriter = rewriter_from_args(args)
    parser = RequestParser(rewriter.registry)
    unknown = False
    results = []
    for path in args.PATHS:
        target = path if path.startswith("/") else "/" + path
        parsed = parser.parse(target)
        url = rewriter.resolve(parsed.target, parsed.platform_key) if parsed.is_known else None
        if url is None:
            logging.warning("No platform matches path: %s", path)
            unknown = True
        results.append({"path": path, "platform": parsed.platform_key, "url": url})

    if getattr(args, "JSON", False):
        sys.stdout.write(json.dumps(results, indent=2) + "\n")
    else:
        for item in results:
            sys.stdout.write(f"{item['path']} -> {item['url'] or '(unknown platform)'}\n")

    if unknown:
        sys.exit(ExitCodes.FILE_ERROR.value)


def list_platforms(args):
    """Print every registered platform with its routing prefix and origin."""
    rewriter = rewriter_from_args(args)
    entries = rewriter.registry.entries()
    if getattr(args, "JSON", False):
        payload = {
            e.key: {
                "origin": e.origin,
                "prefix": e.routing_prefix,
                "rule": rewriter.rule_for(e.key).kind.value,
            }
            for e in entries
        }
        sys.stdout.write(json.dumps(payload, indent=2) + "\n")
        return
    width = max((len(e.routing_prefix) for e in entries), default=0)
    for e in entries:
        rule = rewriter.rule_for(e.key).kind.value
        suffix = f"  [{rule}]" if e.key in rewriter.rules else ""
        sys.stdout.write(f"{e.routing_prefix.ljust(width)}  {e.origin}{suffix}\n")
