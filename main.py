"""
Exam Bank Service: Main Entry Point
===================================
Starts the Flask-based ingestion API.

Usage:
    python main.py                    # Default: 0.0.0.0:5000
    python main.py --port 8000        # Custom port
    python main.py --debug            # Debug mode
"""

import argparse
import logging

from exambank.config import PipelineConfig, setup_logging
from exambank.server import app, create_app

logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Exam Bank Service")
    parser.add_argument("--host", default="0.0.0.0", help="Bind host")
    parser.add_argument("--port", type=int, default=5000, help="Bind port")
    parser.add_argument("--debug", action="store_true", help="Debug mode")
    args = parser.parse_args()

    config = PipelineConfig.from_env()
    setup_logging(config.log_level, config.log_file)

    # create_app() handles init_db() internally
    create_app(config)

    logger.info(f"Database path: {config.db_path}")
    logger.info(f"Starting server on {args.host}:{args.port}")
    app.run(host=args.host, port=args.port, debug=args.debug)


if __name__ == "__main__":
    main()
