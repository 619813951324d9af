"""Subcommand dispatcher for overlaycast.

Usage:
    overlaycast record  --config campaign.yaml --duration 10
    overlaycast export  clip.mp4 --config campaign.yaml
    overlaycast still   --config attestation.yaml --pdf --name "Ada Lovelace"

Pass -v before the subcommand for debug logging.
"""

import argparse
import logging
import sys


def main(args=None):
    parser = argparse.ArgumentParser(
        prog="overlaycast",
        description="Branded overlay capture and export: camera, uploads and print documents.",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )
    subparsers = parser.add_subparsers(dest="command")

    # Register subcommands. Each delegates to its own module's main().
    subparsers.add_parser("record", help="Record the camera with the overlay applied")
    subparsers.add_parser("export", help="Apply the overlay to an uploaded video or image")
    subparsers.add_parser("still", help="Render an HD still or PDF document")

    # Parse only the subcommand name, pass the rest to the subcommand's parser.
    parsed, remaining = parser.parse_known_args(args)

    if parsed.command is None:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if parsed.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )

    if parsed.command == "record":
        from .record_cli import main as record_main
        record_main(remaining)
    elif parsed.command == "export":
        from .export_cli import main as export_main
        export_main(remaining)
    elif parsed.command == "still":
        from .still_cli import main as still_main
        still_main(remaining)


if __name__ == "__main__":
    main()
