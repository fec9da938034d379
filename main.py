#!/usr/bin/env python3
"""
Printdale Print Service - Main Entry Point
Print job pipeline with booklet imposition and status tracking
"""

import sys
import asyncio
import argparse
import logging
from pathlib import Path


def setup_logging(level: str = "INFO", log_directory: str = "logs"):
    """Setup logging to stdout and the service log file"""
    log_dir = Path(log_directory)
    log_dir.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_dir / 'printdale.log', encoding='utf-8')
        ],
        force=True
    )


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(description='Printdale Print Service')
    parser.add_argument('--config', metavar='PATH', help='Path to the JSON configuration file')
    parser.add_argument('--log-level', help='Override the configured log level')

    args = parser.parse_args()

    from printdale.config_manager import ConfigManager
    from printdale.service_manager import PrintService

    config_manager = ConfigManager(args.config)
    try:
        config = config_manager.get_service_config()
    except ValueError as e:
        print(f"Invalid configuration in {config_manager.config_path}: {e}", file=sys.stderr)
        return 1

    setup_logging(args.log_level or config.log_level, config.log_directory)
    logger = logging.getLogger(__name__)
    logger.info(f"Configuration: {config_manager.config_path}")

    service = PrintService(config)

    try:
        asyncio.run(service.run())
        return 0
    except KeyboardInterrupt:
        logger.info("Service stopped by user")
        return 0
    except Exception:
        logger.exception("Fatal error")
        return 1


if __name__ == "__main__":
    sys.exit(main())
