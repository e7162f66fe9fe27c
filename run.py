#!/usr/bin/env python3
"""
Prior Deed Retrieval - Entry point script

Retrieves the most recent recorded deed for one or more addresses in a
supported county and writes each document to the output directory.
"""

import argparse
import ast
import asyncio
import logging
import os
import sys

from deedscraper.adapters import get_adapter, list_adapters
from deedscraper.config import RetrievalSettings
from deedscraper.errors import ConfigurationError
from deedscraper.main import DeedRetrievalGraph
from deedscraper.scrapers.resolver import HttpIdentifierResolver

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def save_document(result, output_dir):
    """
    Write a captured document to disk.

    Args:
        result: RetrievalResult with a document
        output_dir: Directory to write into

    Returns:
        str: Path of the written file
    """
    os.makedirs(output_dir, exist_ok=True)
    path = os.path.join(output_dir, result.document.filename)
    with open(path, "wb") as f:
        f.write(result.document.content)
    return path


def print_summary(address, result, path=None):
    print(f"\nAddress: {address}")
    for step in result.steps:
        marker = "⏭️" if step.skipped else ("✅" if step.success else "❌")
        print(f"  {marker} {step.stage_name} ({step.duration_ms}ms)")
    if result.success:
        print(f"Saved {result.document.byte_length} bytes to {path}")
    else:
        print(f"Failed at {result.error.step}: [{result.error.kind.value}] {result.error.message}")


def process_addresses(addresses, county, state, output_dir="downloads", concurrency=None):
    """
    Retrieve the deed for every address.

    Args:
        addresses: Street addresses in the county
        county: County name, e.g. "Durham"
        state: Two-letter state code
        output_dir: Where documents are written
        concurrency: Parallel browser sessions; settings default when None

    Returns:
        List of RetrievalResult, in address order
    """
    settings = RetrievalSettings.from_env()
    adapter = get_adapter(county, state, settings=settings)

    resolver = None
    if settings.resolver_endpoint:
        resolver = HttpIdentifierResolver(
            settings.resolver_endpoint, settings.resolver_token, settings.resolver_timeout_s
        )

    graph = DeedRetrievalGraph(adapter, settings=settings, resolver=resolver)
    graph.compile()

    print(f"\nProcessing {len(addresses)} address(es) in {adapter.county}, {adapter.state}...")
    results = asyncio.run(graph.run_many(addresses, concurrency))

    succeeded = 0
    for address, result in zip(addresses, results):
        path = save_document(result, output_dir) if result.success else None
        succeeded += int(result.success)
        print_summary(address, result, path)

    print(f"\nRetrieved {succeeded} of {len(results)} deeds")
    return results


def main():
    """Command-line entry point with support for address list argument."""
    parser = argparse.ArgumentParser(description="Prior Deed Retrieval")
    parser.add_argument("--county", "-c", type=str, help="County name, e.g. Durham")
    parser.add_argument("--state", "-s", type=str, help="Two-letter state code, e.g. NC")
    parser.add_argument(
        "--addresses",
        "-a",
        type=str,
        help="List of addresses to process, formatted as a Python list string. Example: \"['123 Main St, Durham, NC']\"",
    )
    parser.add_argument(
        "--file", "-f", type=str, help="Path to a text file containing addresses, one per line"
    )
    parser.add_argument(
        "--output", "-o", type=str, default="downloads", help="Directory for downloaded deeds"
    )
    parser.add_argument(
        "--concurrency", "-n", type=int, default=None, help="Number of parallel browser sessions"
    )
    parser.add_argument(
        "--list-counties", action="store_true", help="List supported counties and exit"
    )

    args = parser.parse_args()

    if args.list_counties:
        for adapter in list_adapters():
            print(f"{adapter['county']}, {adapter['state']}: {adapter['assessorUrl']} -> {adapter['recorderUrl']}")
        return []

    if not args.county or not args.state:
        parser.error("--county and --state are required")

    addresses = []

    # Process addresses from a file if provided
    if args.file:
        try:
            with open(args.file, "r") as f:
                addresses = [line.strip() for line in f if line.strip()]
        except OSError as e:
            print(f"Error reading address file: {e}")
            return []

    # Process addresses from command line argument if provided
    if args.addresses:
        try:
            # Parse the string representation of a list into an actual Python list
            parsed = ast.literal_eval(args.addresses)
            if not isinstance(parsed, list):
                raise ValueError("Addresses must be provided as a list")
            addresses.extend(str(a).strip() for a in parsed if str(a).strip())
        except (ValueError, SyntaxError) as e:
            print(f"Error parsing addresses: {e}")
            print("Make sure the addresses are formatted as a Python list string.")
            print("Example: \"['123 Main St, Durham, NC', '456 Park Ave, Durham, NC']\"")
            return []

    if not addresses:
        parser.error("provide addresses with --addresses or --file")

    try:
        return process_addresses(addresses, args.county, args.state, args.output, args.concurrency)
    except ConfigurationError as e:
        print(f"Configuration error: {e}")
        sys.exit(2)


if __name__ == "__main__":
    main()
