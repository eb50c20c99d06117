#!/usr/bin/env python3
"""
Startup script for the delivery hub API.

Usage:
    # Run with DATABASE_URL from the environment or .env
    python run_server.py

    # Run against a local SQLite file on a custom port
    python run_server.py --database-url sqlite:///./data/delivery.db --port 8001

    # Run with reload for development
    python run_server.py --reload
"""

import argparse
import os
import sys

from dotenv import load_dotenv


def run_server(
    host: str = "0.0.0.0",
    port: int = 8000,
    database_url: str = None,
    reload: bool = False,
) -> None:
    """Run the application with uvicorn."""
    if database_url:
        os.environ["DATABASE_URL"] = database_url

    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        print("Error: DATABASE_URL is not set (use --database-url or .env)")
        sys.exit(1)

    print(f"\n{'=' * 50}")
    print("Starting: Delivery Hub API")
    print(f"Port:     {port}")
    print(f"Database: {database_url}")
    print(f"{'=' * 50}\n")

    # Ensure data directory exists
    if database_url.startswith("sqlite:///./"):
        db_path = database_url.replace("sqlite:///./", "")
        db_dir = os.path.dirname(db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

    import uvicorn

    uvicorn.run(
        "delivery_hub.main:app",
        host=host,
        port=port,
        reload=reload,
    )


def main():
    load_dotenv()

    parser = argparse.ArgumentParser(description="Run the delivery hub API")
    parser.add_argument(
        "--host",
        default="0.0.0.0",
        help="Host to bind to (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        "-p",
        type=int,
        default=int(os.getenv("PORT", "8000")),
        help="Port to run on (default: 8000 or $PORT)",
    )
    parser.add_argument(
        "--database-url",
        "-d",
        help="SQLAlchemy database URL (overrides DATABASE_URL)",
    )
    parser.add_argument(
        "--reload",
        "-r",
        action="store_true",
        help="Enable auto-reload for development",
    )

    args = parser.parse_args()

    run_server(
        host=args.host,
        port=args.port,
        database_url=args.database_url,
        reload=args.reload,
    )


if __name__ == "__main__":
    main()
