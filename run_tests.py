#!/usr/bin/env python3
"""
Test Execution Manager

Runs the harness test suite by category:

- unit:        host-only tests, no subprocesses or sockets
- integration: tests that launch a stand-in server or probe TCP endpoints
- slow:        full ResNet50 inference (needs torchvision)
- ci:          unit, then integration
"""

import argparse
import os
import subprocess
import sys
import time
from pathlib import Path


def run_command(cmd, description=""):
    """Run a command and return (success, duration)"""
    print(f"{description}")
    print(f"Command: {' '.join(cmd)}")
    print("-" * 60)

    start_time = time.time()

    try:
        result = subprocess.run(cmd, check=False)
        duration = time.time() - start_time

        print(f"\nCompleted in {duration:.2f}s (exit code {result.returncode})")
        return result.returncode == 0, duration

    except KeyboardInterrupt:
        print("\nTest run interrupted by user")
        return False, time.time() - start_time


def pytest_command(marker):
    return [
        sys.executable, "-m", "pytest",
        "tests/",
        "-m", marker,
        "-v", "--tb=short",
        "--durations=10",
    ]


def run_unit_tests():
    return run_command(pytest_command("not (integration or slow)"),
                       "Running unit tests (host-only)")


def run_integration_tests():
    return run_command(pytest_command("integration"),
                       "Running integration tests (server process and endpoint probing)")


def run_slow_tests():
    return run_command(pytest_command("slow"),
                       "Running slow tests (ResNet50 inference)")


def run_ci_pipeline():
    """Unit tests gate the integration stage"""
    results = {}

    success, duration = run_unit_tests()
    results['unit'] = {'success': success, 'duration': duration}
    if success:
        success, duration = run_integration_tests()
        results['integration'] = {'success': success, 'duration': duration}
    else:
        print("Unit tests failed - skipping integration stage")

    print("\n" + "=" * 60)
    print("CI PIPELINE SUMMARY")
    print("=" * 60)
    for stage, result in results.items():
        status = "PASS" if result['success'] else "FAIL"
        print(f"{stage.capitalize():15} {status:8} {result['duration']:8.2f}s")

    return all(r['success'] for r in results.values())


def main():
    parser = argparse.ArgumentParser(description="Test Execution Manager")
    parser.add_argument("command", choices=["unit", "integration", "slow", "ci", "all"],
                        help="Type of tests to run")
    args = parser.parse_args()

    os.environ["PYTHONPATH"] = "src"

    print(f"Test Execution Manager - {args.command.upper()} mode")
    print(f"Working directory: {Path.cwd()}")
    print()

    if args.command == "unit":
        success, _ = run_unit_tests()
    elif args.command == "integration":
        success, _ = run_integration_tests()
    elif args.command == "slow":
        success, _ = run_slow_tests()
    elif args.command == "ci":
        success = run_ci_pipeline()
    else:
        success = True
        for runner in (run_unit_tests, run_integration_tests, run_slow_tests):
            test_success, _ = runner()
            success = success and test_success

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
