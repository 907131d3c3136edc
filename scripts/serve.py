#!/usr/bin/env python3
"""
API Server

Runs the policy engine API with uvicorn using the configured host and port.
"""

import argparse
import sys
from pathlib import Path

import uvicorn

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import get_settings
from src.api.app import create_app


def main():
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Run the policy engine API")
    parser.add_argument("--host", default=settings.api_host, help="Bind host")
    parser.add_argument("--port", type=int, default=settings.api_port, help="Bind port")
    args = parser.parse_args()

    uvicorn.run(
        create_app(settings),
        host=args.host,
        port=args.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
