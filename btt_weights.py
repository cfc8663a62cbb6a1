#!/usr/bin/env python3
import os
import asyncio
import logging
import argparse

from weights_report.errors import ReportError
from weights_report.settings import (
    DEFAULT_CONFIG_PATH, PRICE_SOURCES, build_config, read_config_file, split_hotkeys, write_example_config,
)
from weights_report.chain_reader import ChainReader
from weights_report.price_feed import PriceFeed
from weights_report.pipeline import compute_report
from weights_report.report import render_report, render_csv, render_json

logger = logging.getLogger('btt_weights')


def setup_logging(verbose=False, log_file='btt_weights.log'):
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True,
    )


def build_parser():
    parser = argparse.ArgumentParser(description='Report pruning risk and daily rewards for subnet hotkeys')
    parser.add_argument('--config', type=str, default=DEFAULT_CONFIG_PATH, help='Path to configuration file')
    parser.add_argument('--netuid', type=int, help='Subnet to query')
    parser.add_argument('--endpoint', type=str, help='Subtensor websocket endpoint, e.g. ws://127.0.0.1:9944')
    parser.add_argument('--hotkeys', type=str, help='Comma separated hotkeys to report on')
    parser.add_argument('--price-source', type=str, choices=PRICE_SOURCES, help='Where to fetch the TAO/USD price')
    parser.add_argument('--timeout', type=float, help='Timeout in seconds for each network call')
    parser.add_argument('--format', type=str, choices=('table', 'csv', 'json'), default='table', help='Output format')
    parser.add_argument('--verbose', action='store_true', help='Enable debug logging')
    parser.add_argument('--log-file', type=str, default='btt_weights.log', help='Log file path (empty to disable)')
    return parser


async def run_report(config, reader=None, price_feed=None):
    """Connect, compute the report for the configured subnet and disconnect"""
    if price_feed is None:
        price_feed = PriceFeed(source=config.price_source, timeout_seconds=config.timeout_seconds)
    if reader is None:
        reader = ChainReader(config.endpoint, timeout_seconds=config.timeout_seconds)

    async with reader:
        return await compute_report(
            reader,
            price_feed,
            config.netuid,
            config.subnet_hotkeys,
            protocol=config.protocol,
            max_concurrency=config.max_concurrency,
        )


def format_output(report, output_format):
    if output_format == 'csv':
        return render_csv(report.rows)
    if output_format == 'json':
        return render_json(report)
    return render_report(report)


def main(argv=None):
    """Main function to run the script"""
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose, args.log_file)

    cli_hotkeys = split_hotkeys(args.hotkeys)
    overrides = {
        'netuid': args.netuid,
        'endpoint': args.endpoint,
        'hotkeys': cli_hotkeys,
        'price_source': args.price_source,
        'timeout_seconds': args.timeout,
    }

    try:
        file_data = read_config_file(args.config)
        if file_data is None and not cli_hotkeys and not split_hotkeys(os.getenv('HOTKEYS', '')):
            logger.error(f"Configuration file {args.config} not found and no hotkeys given")
            logger.info("Creating example configuration file...")
            write_example_config(args.config)
            return 1

        config = build_config(file_data, overrides=overrides)
        logger.info(f"Reporting {len(config.subnet_hotkeys)} hotkeys on netuid {config.netuid} via {config.endpoint}")
        logger.debug(f"Effective configuration: {config.to_dict()}")
        report = asyncio.run(run_report(config))
    except ReportError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, stopping")
        return 1

    print(format_output(report, args.format))
    return 0


if __name__ == "__main__":
    exit(main())
