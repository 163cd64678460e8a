#!/usr/bin/env python3
"""
SafePath Quick Launcher
=======================

Usage:
    python launch.py                    # Production-style server
    python launch.py --dev              # Auto-reload, debug logging
    python launch.py --port 9000        # Custom port
"""

import sys
import logging

import uvicorn

logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
logger = logging.getLogger(__name__)


def main():
    import argparse

    parser = argparse.ArgumentParser(description='SafePath Quick Launcher')
    parser.add_argument('--dev', action='store_true',
                        help='Development mode with auto-reload')
    parser.add_argument('--host', default='0.0.0.0',
                        help='Interface to bind')
    parser.add_argument('--port', type=int, default=8000,
                        help='Port to listen on')
    parser.add_argument('--workers', type=int, default=1,
                        help='Worker processes (ignored with --dev)')

    args = parser.parse_args()

    logger.info(f"Launching SafePath API on {args.host}:{args.port}")
    try:
        uvicorn.run(
            "safepath.main:app",
            host=args.host,
            port=args.port,
            reload=args.dev,
            workers=None if args.dev else args.workers,
            log_level="debug" if args.dev else "info",
        )
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
        sys.exit(0)


if __name__ == "__main__":
    main()
