"""Encounter Forge: dev launcher. Starts the API server in watch mode."""

import argparse
import os
import subprocess
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = os.getenv("PORT", "13013")


def main():
    parser = argparse.ArgumentParser(description="Encounter Forge dev launcher")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Data storage directory (default: ./data)")
    parser.add_argument("--mcp", action="store_true",
                        help="Run the MCP tool server on stdio instead of the API")
    args = parser.parse_args()

    # Build env for the subprocess so the backend picks up the same data dir
    env = os.environ.copy()
    if args.data_dir:
        env["DATA_DIR"] = str(args.data_dir.resolve())

    if args.mcp:
        cmd = ["uv", "run", "python", "-m", "backend.mcp_server"]
    else:
        print(f"Starting API on http://localhost:{PORT} ...")
        cmd = ["uv", "run", "uvicorn", "backend.app:create_app", "--factory",
               "--reload", "--host", HOST, "--port", PORT]

    try:
        sys.exit(subprocess.call(cmd, cwd=ROOT, env=env))
    except KeyboardInterrupt:
        print("\nShutting down...")


if __name__ == "__main__":
    main()
