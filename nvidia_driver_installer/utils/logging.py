"""Logging utilities for the NVIDIA driver installer"""

import os
import sys


class Colors:
    """ANSI color codes for terminal output"""
    RESET = '\033[0m'
    BOLD = '\033[1m'
    RED = '\033[1;31m'
    GREEN = '\033[1;32m'
    YELLOW = '\033[1;33m'
    BLUE = '\033[1;34m'
    CYAN = '\033[1;36m'


def _use_color(stream) -> bool:
    """Colors only on a real terminal, and never when NO_COLOR is set."""
    if os.environ.get("NO_COLOR"):
        return False
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


def _emit(color, text, stream=None, prefix=""):
    stream = stream or sys.stdout
    if _use_color(stream):
        print(f"{prefix}{color}{text}{Colors.RESET}", file=stream, flush=True)
    else:
        print(f"{prefix}{text}", file=stream, flush=True)


def log_info(message):
    """Log info message in green"""
    _emit(Colors.GREEN, f"[INFO]  {message}")


def log_warn(message):
    """Log warning message in yellow"""
    _emit(Colors.YELLOW, f"[WARN]  {message}")


def log_error(message):
    """Log error message in red on stderr"""
    _emit(Colors.RED, f"[ERROR] {message}", stream=sys.stderr)


def log_step(message):
    """Log step message in blue with newline before"""
    _emit(Colors.BLUE, f"[STEP]  {message}", prefix="\n")


def log_success(message):
    """Log success message in bold green"""
    _emit(f"{Colors.BOLD}{Colors.GREEN}", f"✓ {message}")
