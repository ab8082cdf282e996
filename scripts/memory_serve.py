"""
CLI for launching the memory FastAPI server.

Usage:
    python scripts/memory_serve.py
    python scripts/memory_serve.py --port 8080 --host 127.0.0.1
"""

import argparse
import sys

import uvicorn


def main():
    parser = argparse.ArgumentParser(
        description="Launch Memory Engine FastAPI server"
    )

    parser.add_argument(
        "--host",
        type=str,
        default="0.0.0.0",
        help="Host to bind to",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind to",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload for development",
    )

    args = parser.parse_args()

    print(f"Starting Memory Engine API server on {args.host}:{args.port}")
    print(f"API documentation available at: http://localhost:{args.port}/docs")

    uvicorn.run(
        "memory_engine.api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
    )

    return 0


if __name__ == "__main__":
    sys.exit(main())
