#!/usr/bin/env python3
"""
Test runner script for the asset admin service.

Marker options combine into one ``-m`` expression, e.g. ``--unit --fast``
runs ``unit and not slow``.
"""
import sys
import subprocess
import argparse

COVERAGE_THRESHOLD = 85


def build_command(args):
    """Translate runner options into a pytest command line."""
    cmd = [sys.executable, "-m", "pytest", "-v" if args.verbose else "-q"]

    if args.parallel:
        cmd.extend(["-n", str(args.parallel)])

    if args.coverage:
        cmd.extend([
            "--cov=asset_admin",
            "--cov-report=term-missing",
            "--cov-report=html:htmlcov",
            f"--cov-fail-under={COVERAGE_THRESHOLD}",
        ])

    markers = []
    if args.unit:
        markers.append("unit")
    elif args.integration:
        markers.append("integration")
    if args.fast:
        markers.append("not slow")
    if markers:
        cmd.extend(["-m", " and ".join(markers)])

    cmd.extend(args.paths or ["tests"])
    return cmd


def main():
    parser = argparse.ArgumentParser(description="Run tests for the asset admin service")
    suite = parser.add_mutually_exclusive_group()
    suite.add_argument("--unit", action="store_true", help="Run unit tests only")
    suite.add_argument("--integration", action="store_true", help="Run integration tests only")
    parser.add_argument("--coverage", action="store_true", help="Generate coverage report")
    parser.add_argument("--fast", action="store_true", help="Skip slow tests")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    parser.add_argument("--parallel", "-n", type=int, help="Number of parallel workers")
    parser.add_argument("paths", nargs="*", help="Test files or directories (default: tests)")

    args = parser.parse_args()
    cmd = build_command(args)

    print(f"Command: {' '.join(cmd)}")
    returncode = subprocess.run(cmd).returncode

    if returncode == 0 and args.coverage:
        print("Coverage report written to htmlcov/index.html")
    return returncode


if __name__ == "__main__":
    sys.exit(main())
