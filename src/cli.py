#!/usr/bin/env python3
"""CLI entry point for stack-installer.

Verbs:
- install: Install every component in dependency order (concurrent)
- upgrade: Upgrade every component in plan order (one at a time)
- uninstall: Remove every component in reverse dependency order (concurrent)
- plan: Print the install order
- validate: Check manifest structure and dependencies
"""

import logging
import subprocess
import sys
from pathlib import Path

VERB_COMMANDS = {
    "install": "Install all components in dependency order",
    "upgrade": "Upgrade all components, one at a time",
    "uninstall": "Uninstall all components in reverse dependency order",
    "plan": "Print the install order",
    "validate": "Validate manifest structure and dependencies",
}

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def get_version():
    """Get version from git tags, falling back to 'dev'."""
    try:
        result = subprocess.run(
            ['git', 'describe', '--tags', '--abbrev=0'],
            capture_output=True, text=True,
            cwd=Path(__file__).parent,
            check=False,
        )
        return result.stdout.strip() if result.returncode == 0 else 'dev'
    except OSError:
        return 'dev'


def print_usage():
    print("Usage: stack-installer <verb> [options]")
    print()
    print("Verbs:")
    for verb, description in VERB_COMMANDS.items():
        print(f"  {verb:<10} {description}")
    print()
    print("Run 'stack-installer <verb> --help' for verb-specific options.")


def dispatch_verb(verb: str, argv: list) -> int:
    """Dispatch to the verb's CLI handler.

    Args:
        verb: One of VERB_COMMANDS
        argv: Remaining command line arguments

    Returns:
        Exit code
    """
    from installer import cli as installer_cli

    handlers = {
        "install": installer_cli.install_main,
        "upgrade": installer_cli.upgrade_main,
        "uninstall": installer_cli.uninstall_main,
        "plan": installer_cli.plan_main,
        "validate": installer_cli.validate_main,
    }
    rc: int = handlers[verb](argv)
    return rc


def main(argv: list = None) -> int:
    """CLI entry point: dispatch to verb handlers."""
    argv = sys.argv[1:] if argv is None else argv

    if not argv or argv[0] in ('-h', '--help'):
        print_usage()
        return 0 if argv else 1

    if argv[0] == '--version':
        print(f"stack-installer {get_version()}")
        return 0

    verb = argv[0]
    if verb not in VERB_COMMANDS:
        print(f"Error: Unknown command '{verb}'")
        print_usage()
        return 1

    return dispatch_verb(verb, argv[1:])


if __name__ == '__main__':
    sys.exit(main())
