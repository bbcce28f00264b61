#!/usr/bin/env python3
"""
Demo entry point: several worker processes logging into one file.

Usage:
    python -m logsequencer.main --file app.log --workers 4 --messages 100
    
    # Echo to the console as well, with a YAML config
    python -m logsequencer.main --config logsequencer.yaml --echo
"""

import argparse
import asyncio
import multiprocessing
import sys

from logsequencer.fanin import ProcessChannel
from logsequencer.logger import AUTHORITATIVE, WORKER, create_logger
from logsequencer.utils.config import Config, LoggerConfig
from logsequencer.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description='logsequencer demo - ordered fan-in logging from worker processes'
    )
    
    parser.add_argument(
        '--config',
        type=str,
        default=None,
        help='YAML configuration file'
    )
    
    parser.add_argument(
        '--file',
        type=str,
        default=None,
        help='Log file to append to (default: from config)'
    )
    
    parser.add_argument(
        '--level',
        type=str,
        default=None,
        choices=['TRACE', 'DEBUG', 'INFO', 'WARN', 'ERROR', 'SILENT'],
        help='Minimum severity (default: from config)'
    )
    
    parser.add_argument(
        '--echo',
        action='store_true',
        help='Echo written lines to stdout/stderr'
    )
    
    parser.add_argument(
        '--retry-delay-ms',
        type=int,
        default=None,
        help='Delay before retrying a failed write (default: 2000)'
    )
    
    parser.add_argument(
        '--workers',
        type=int,
        default=2,
        help='Number of worker processes (default: 2)'
    )
    
    parser.add_argument(
        '--messages',
        type=int,
        default=10,
        help='Messages logged by each worker (default: 10)'
    )
    
    parser.add_argument(
        '--diag-level',
        type=str,
        default=None,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Level of the sequencer diagnostics on stderr (default: from config)'
    )
    
    return parser.parse_args(argv)


def build_config(args) -> Config:
    """Layer command-line options over the file/env configuration."""
    config = Config(args.config)
    
    if args.file is not None:
        config.set("logger.file", args.file)
    if args.level is not None:
        config.set("logger.level", args.level)
    if args.echo:
        config.set("logger.echo", True)
    if args.retry_delay_ms is not None:
        config.set("logger.retry_delay_ms", args.retry_delay_ms)
    if args.diag_level is not None:
        config.set("diagnostics.level", args.diag_level)
    
    return config


def worker_main(
    channel: ProcessChannel,
    logger_config: LoggerConfig,
    worker_id: int,
    messages: int,
    diag_level: str,
) -> None:
    """Worker process body: log messages through the channel."""
    configure_logging(log_level=diag_level)
    
    log = create_logger(logger_config, channel=channel, role=WORKER)
    
    log.info("worker {1} started", worker_id)
    for i in range(messages):
        log.info("worker {1} message", f"{worker_id}:{i}")
    log.warn("worker {1} finished", worker_id)


async def run(args) -> int:
    """Run the authoritative side of the demo."""
    config = build_config(args)
    configure_logging(
        log_level=config.get("diagnostics.level"),
        log_format=config.get("diagnostics.format"),
        log_output=config.get("diagnostics.output"),
    )
    logger_config = config.to_logger_config()
    
    log = create_logger(logger_config, role=AUTHORITATIVE)
    ctx = multiprocessing.get_context("spawn")
    channel = ProcessChannel(ctx.Queue())
    log.listen(channel)
    
    log.info("starting {1} workers", args.workers)
    
    processes = [
        ctx.Process(
            target=worker_main,
            args=(
                channel,
                logger_config,
                worker_id,
                args.messages,
                config.get("diagnostics.level"),
            ),
            name=f"logsequencer-worker-{worker_id}",
        )
        for worker_id in range(args.workers)
    ]
    for process in processes:
        process.start()
    
    loop = asyncio.get_running_loop()
    for process in processes:
        await loop.run_in_executor(None, process.join)
    
    failed = [p.name for p in processes if p.exitcode != 0]
    if failed:
        log.error("workers failed: {1}", failed)
    
    await log.stop_listening()
    log.info("all workers done")
    await log.wait_idle()
    
    logger.info("Demo finished", stats=log.get_stats())
    log.close()
    
    return 1 if failed else 0


def main(argv=None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == '__main__':
    sys.exit(main())
