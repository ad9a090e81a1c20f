"""
Serve the API with uvicorn.

Usage:
    python -m todo_api [--host 0.0.0.0] [--port 8000] [--reload]
"""
from __future__ import annotations

import argparse
from typing import List, Optional

import uvicorn


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="todo_api", description="Run the Todo Backend API server.")
    parser.add_argument("--host", default="127.0.0.1", help="Interface to bind (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8000, help="Port to listen on (default: 8000)")
    parser.add_argument("--reload", action="store_true", help="Restart on code changes (development only)")
    args = parser.parse_args(argv)

    # Logging is configured by todo_api.main; keep uvicorn from installing its own config
    uvicorn.run("todo_api.main:app", host=args.host, port=args.port, reload=args.reload, log_config=None)


if __name__ == "__main__":
    main()
