"""
TPU Harness Command Line Interface

Runs the built-in compile / execute / verify scenarios against an
accelerator target and checks the local environment.
"""

import argparse
import sys
from typing import List, Optional

from .doctor import DoctorCommand
from .run import ListCommand, RunCommand

COMMANDS = {
    'run': RunCommand,
    'list': ListCommand,
    'doctor': DoctorCommand,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='tpu-harness',
        description='Compile, run and verify tensor programs on a TPU target. '
                    'Targets are grpc://host:port or local://cpu.',
    )
    parser.add_argument('--version', action='version', version='%(prog)s 0.1.0')

    subparsers = parser.add_subparsers(dest='command', metavar='<command>')
    for command in COMMANDS.values():
        command.register(subparsers)
    return parser


def main(args: Optional[List[str]] = None) -> int:
    """Entry point; returns the process exit code."""
    parser = build_parser()
    parsed_args = parser.parse_args(sys.argv[1:] if args is None else args)

    command = COMMANDS.get(parsed_args.command)
    if command is None:
        parser.print_help()
        return 1

    try:
        return command.execute(parsed_args)
    except KeyboardInterrupt:
        print("\nInterrupted; accelerator resources were released")
        return 130
    except Exception as e:
        print(f"Error: {e}")
        return 1
