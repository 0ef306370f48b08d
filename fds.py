#!/usr/bin/env python3
import sys
import logging
import argparse

from fds_common import FdsError, parse_private_blocks
from fds_client import Client
from fds_server import DEFAULT_HOST, DEFAULT_PORT, Terminated, new_temp_server

logger = logging.getLogger("fds")

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Drop a file into a temporary HTTP file server.")
    parser.add_argument("--server", action="store_true", help="Serve a temporary directory until interrupted")
    parser.add_argument("path", nargs="?", default=None, help="File to upload (client mode)")
    parser.add_argument("--host", default=DEFAULT_HOST, help="Address to bind to / server to contact")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Port to bind to / server port")
    parser.add_argument("--allow-put", action="store_true", help="Server: also accept HTTP PUT uploads")
    parser.add_argument("--max-mb", type=int, default=250, help="Server: max PUT upload size (MiB)")
    parser.add_argument("--http", action="store_true", help="Client: upload with HTTP PUT instead of the shared filesystem")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser

def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    if not verbose:
        logging.getLogger("werkzeug").setLevel(logging.WARNING)

def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        blocks = parse_private_blocks()

        if args.server:
            srv = new_temp_server(
                host=args.host,
                port=args.port,
                blocks=blocks,
                allow_put=args.allow_put,
                max_mb=args.max_mb,
            )
            srv.start()
            return 0

        if not args.path:
            parser.print_usage()
            return 0

        client = Client(host=args.host, port=args.port, blocks=blocks)
        client.put(args.path, via_http=args.http)
        return 0
    except Terminated as e:
        logger.info("%s", e)
        return 128 + e.signum
    except FdsError as e:
        logger.error("%s", e)
        return 1

def main_entry() -> None:
    sys.exit(main())

if __name__ == "__main__":
    main_entry()
