"""NVIDIA Driver Installer - Command Line Interface

Entry point for the nvidia-install CLI command and python3 -m nvidia_driver_installer.
"""

import argparse
import sys
import traceback

from . import __version__
from .config import load_config
from .nvidia.sources import NAMED_RELEASES, usage_text
from .pipeline import run_install
from .utils.errors import InstallerError, UsageError
from .utils.logging import log_error, log_info


def show_banner() -> None:
    """Display application banner."""
    banner = """
╔══════════════════════════════════════════════════════════════╗
║             NVIDIA Driver Installer - Clear Linux            ║
╚══════════════════════════════════════════════════════════════╝
"""
    print(banner)


class _SelectorParser(argparse.ArgumentParser):
    """Reports bad arguments as a usage error instead of exiting 2."""

    def error(self, message):
        raise UsageError(f"{message}\n{usage_text()}")


def build_parser() -> argparse.ArgumentParser:
    parser = _SelectorParser(
        prog="nvidia-install",
        description="Install the proprietary NVIDIA driver on Clear Linux OS.",
        epilog=usage_text(),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "selector", nargs="?", default="",
        help=f"latest, vulkan, {', '.join(NAMED_RELEASES)} or a path to a driver package",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv=None) -> int:
    """Run one installation and return its exit status."""
    try:
        args = build_parser().parse_args(argv)
    except UsageError as exc:
        log_error(exc.message)
        return exc.exit_code
    if not args.selector:
        log_error(f"No driver selector given\n{usage_text()}")
        return 1
    try:
        show_banner()
        run_install(args.selector, load_config())
    except InstallerError as exc:
        log_error(exc.message)
        return exc.exit_code
    except KeyboardInterrupt:
        print()
        log_info("Cancelled.")
        return 1
    except Exception as e:
        log_error(f"Installation failed: {str(e)}")
        log_error(f"Traceback: {traceback.format_exc()}")
        return 1
    return 0


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
