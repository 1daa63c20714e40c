# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
OAuth Chat Gateway - Main entry point.

This module handles:
- CLI argument parsing
- Credential tool mode
- Logging configuration
- Application startup

The actual FastAPI application is created via app_factory.create_app().
"""

import argparse
import logging
import os
import sys
import time
from pathlib import Path

# --- Argument Parsing (BEFORE heavy imports) ---
parser = argparse.ArgumentParser(description="OAuth Chat Gateway")
parser.add_argument(
    "--host", type=str, default="0.0.0.0", help="Host to bind the server to."
)
parser.add_argument("--port", type=int, default=8000, help="Port to run the server on.")
parser.add_argument(
    "--add-credential",
    action="store_true",
    help="Launch the interactive tool to manage upstream OAuth credentials.",
)
args, _ = parser.parse_known_args()

# Add the 'src' directory to the Python path
sys.path.append(str(Path(__file__).resolve().parent.parent))

# Load environment variables
from dotenv import load_dotenv

_root_dir = Path.cwd()

load_dotenv(_root_dir / ".env")

# Load additional .env files
_env_files_found = list(_root_dir.glob("*.env"))
for _env_file in sorted(_root_dir.glob("*.env")):
    if _env_file.name != ".env":
        load_dotenv(_env_file, override=False)

if _env_files_found:
    _env_names = [_ef.name for _ef in _env_files_found]
    print(f"📁 Loaded {len(_env_files_found)} .env file(s): {', '.join(_env_names)}")

# Check if credential tool mode
if args.add_credential:
    from gateway_library.credential_tool import run_credential_tool

    run_credential_tool()
    sys.exit(0)

# If we get here, we're ACTUALLY running the gateway
_start_time = time.time()

_custom_tokens = [t for t in os.getenv("CUSTOM_TOKENS", "").split(",") if t.strip()]
tokens_display = (
    f"✓ {len(_custom_tokens)} configured"
    if _custom_tokens
    else "✗ Not Set (all chat requests will be rejected)"
)
admin_display = "✓ Set" if os.getenv("ADMIN_KEY") else "✗ Not Set (admin API disabled)"


def _print_header():
    print("━" * 70)
    print(f"Starting gateway on {args.host}:{args.port}")
    print(f"Caller tokens: {tokens_display}")
    print(f"Admin key: {admin_display}")
    print("━" * 70)


_print_header()
print("Loading server components...")

from rich.console import Console

_console = Console()

with _console.status("[dim]Initializing gateway core...", spinner="dots"):
    from gateway_app.app_factory import create_app
    from gateway_library.utils import safe_mkdir

_elapsed = time.time() - _start_time
print(f"✓ Server ready in {_elapsed:.2f}s")

# --- Logging Configuration ---
LOG_DIR = _root_dir / "logs"
safe_mkdir(LOG_DIR, logging.getLogger(__name__))

import colorlog

console_handler = colorlog.StreamHandler(sys.stdout)
console_handler.setLevel(logging.INFO)
formatter = colorlog.ColoredFormatter(
    "%(log_color)s%(message)s",
    log_colors={
        "DEBUG": "cyan",
        "INFO": "green",
        "WARNING": "yellow",
        "ERROR": "red",
        "CRITICAL": "red,bg_white",
    },
)
console_handler.setFormatter(formatter)

# File handlers
info_file_handler = logging.FileHandler(LOG_DIR / "proxy.log", encoding="utf-8")
info_file_handler.setLevel(logging.INFO)
info_file_handler.setFormatter(
    logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
)

debug_file_handler = logging.FileHandler(LOG_DIR / "proxy_debug.log", encoding="utf-8")
debug_file_handler.setLevel(logging.DEBUG)
debug_file_handler.setFormatter(
    logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
)


class GatewayDebugFilter(logging.Filter):
    def filter(self, record):
        return record.levelno == logging.DEBUG and record.name.startswith("gateway_library")


debug_file_handler.addFilter(GatewayDebugFilter())

# Configure root logger
root_logger = logging.getLogger()
root_logger.setLevel(logging.DEBUG)
root_logger.addHandler(info_file_handler)
root_logger.addHandler(console_handler)
root_logger.addHandler(debug_file_handler)

# Silence noisy loggers
logging.getLogger("uvicorn").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

# Create the FastAPI application
app = create_app(data_dir=_root_dir)

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=args.host, port=args.port)
