"""
Environment diagnostics for the TPU Harness CLI.

Checks that the host can compile with PyTorch, whether PyTorch/XLA and the
accelerator server are available, and whether the configured target accepts
connections.
"""

import argparse
import json
import platform
import shutil
import sys
import time
from dataclasses import asdict, dataclass

import torch

import tpu_harness

from .. import xla_compat
from ..config import HarnessConfig, Target
from ..exceptions import ConfigurationError
from ..session import wait_for_endpoint


@dataclass
class DiagnosticResult:
    """Result from a single diagnostic check."""
    name: str
    status: str  # "pass", "warning", "fail"
    message: str
    details: str | None = None
    recommendation: str | None = None


class DoctorCommand:
    """Environment diagnostics command implementation."""

    @staticmethod
    def register(subparsers) -> None:
        """Register the doctor command with argument parser."""
        parser = subparsers.add_parser(
            'doctor',
            help='Check the environment for running the harness',
            description='Check PyTorch, PyTorch/XLA, the server binary and the target',
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
Check Categories:
  basic        - Python, PyTorch and NumPy
  accelerator  - PyTorch/XLA, torchvision and the server command
  target       - Reachability of the configured target

Examples:
  tpu-harness doctor
  tpu-harness doctor --category target --target grpc://10.0.0.2:8470
  tpu-harness doctor --output report.json
            """
        )

        parser.add_argument(
            '--category',
            choices=['basic', 'accelerator', 'target'],
            help='Focus on specific diagnostic category'
        )

        parser.add_argument(
            '--target',
            type=str,
            help='Target to probe (default: from the environment)'
        )

        parser.add_argument(
            '--timeout',
            type=float,
            default=2.0,
            help='Seconds to wait when probing the target'
        )

        parser.add_argument(
            '--output', '-o',
            type=str,
            help='Save diagnostic report to file'
        )

        parser.add_argument(
            '--verbose', '-v',
            action='store_true',
            help='Show details for each check'
        )

    @staticmethod
    def execute(args) -> int:
        """Execute the doctor command."""
        print("TPU Harness Diagnostics")
        print("=" * 50)

        config = HarnessConfig.from_environment()
        target = args.target or config.session.target

        results = []
        if args.category in (None, 'basic'):
            results.extend(DoctorCommand._check_basic_requirements(args.verbose))
        if args.category in (None, 'accelerator'):
            results.extend(DoctorCommand._check_accelerator(config, args.verbose))
        if args.category in (None, 'target'):
            results.extend(DoctorCommand._check_target(target, args.timeout, args.verbose))

        DoctorCommand._display_results(results, args.verbose)
        print(DoctorCommand._generate_summary(results))

        if args.output:
            DoctorCommand._save_report(results, args.output, args.verbose)

        has_failures = any(r.status == 'fail' for r in results)
        return 1 if has_failures else 0

    @staticmethod
    def _check_basic_requirements(verbose: bool) -> list[DiagnosticResult]:
        """Check Python, PyTorch and NumPy."""
        if verbose:
            print("Checking basic requirements...")

        results = []

        python_version = platform.python_version()
        if sys.version_info >= (3, 10):
            results.append(DiagnosticResult("Python Version", "pass", f"Python {python_version}"))
        else:
            results.append(DiagnosticResult(
                "Python Version",
                "fail",
                f"Python {python_version} (requires 3.10+)",
                recommendation="Upgrade to Python 3.10 or later"
            ))

        torch_major = int(torch.__version__.split('.')[0])
        if torch_major >= 2:
            results.append(DiagnosticResult("PyTorch Version", "pass", f"PyTorch {torch.__version__}"))
        else:
            results.append(DiagnosticResult(
                "PyTorch Version",
                "fail",
                f"PyTorch {torch.__version__} (make_fx tracing requires 2.x)",
                recommendation="Upgrade PyTorch: pip install 'torch>=2.1'"
            ))

        import numpy as np
        results.append(DiagnosticResult("NumPy Version", "pass", f"NumPy {np.__version__}"))

        results.append(DiagnosticResult(
            "TPU Harness Version", "pass", f"tpu-harness {tpu_harness.__version__}"
        ))
        return results

    @staticmethod
    def _check_accelerator(config: HarnessConfig, verbose: bool) -> list[DiagnosticResult]:
        """Check PyTorch/XLA, torchvision and the server command."""
        if verbose:
            print("Checking accelerator stack...")

        results = []

        if xla_compat.is_xla_available():
            results.append(DiagnosticResult(
                "PyTorch/XLA",
                "pass",
                f"torch_xla {xla_compat.get_torch_xla_version()}"
            ))
        else:
            results.append(DiagnosticResult(
                "PyTorch/XLA",
                "warning",
                "torch_xla not installed; grpc targets fall back to the host CPU",
                recommendation="Install PyTorch/XLA: pip install 'tpu-harness[tpu]'"
            ))

        try:
            import torchvision
            results.append(DiagnosticResult("torchvision", "pass", f"torchvision {torchvision.__version__}"))
        except ImportError:
            results.append(DiagnosticResult(
                "torchvision",
                "warning",
                "torchvision not installed; ResNet50 inference unavailable",
                recommendation="Install torchvision: pip install 'tpu-harness[vision]'"
            ))

        if not config.server.launch:
            results.append(DiagnosticResult(
                "Server Command", "pass", "server launch disabled (connecting to a running server)"
            ))
        else:
            executable = config.server.command[0]
            resolved = shutil.which(executable)
            if resolved:
                results.append(DiagnosticResult(
                    "Server Command", "pass", f"{executable} found", details=resolved
                ))
            else:
                results.append(DiagnosticResult(
                    "Server Command",
                    "warning",
                    f"{executable} not found on PATH",
                    recommendation="Install the server or set TPU_HARNESS_SERVER"
                ))

        if HarnessConfig.running_on_colab():
            results.append(DiagnosticResult("Colab", "pass", "running on Google Colab"))
        return results

    @staticmethod
    def _check_target(target: str, timeout: float, verbose: bool) -> list[DiagnosticResult]:
        """Probe the target endpoint."""
        if verbose:
            print(f"Probing target {target}...")

        try:
            parsed = Target.parse(target)
        except ConfigurationError as e:
            return [DiagnosticResult("Target", "fail", str(e), recommendation="Use grpc://host:port or local://cpu")]

        if not parsed.is_remote:
            return [DiagnosticResult("Target", "pass", f"{parsed} (in-process, no server needed)")]

        try:
            waited = wait_for_endpoint(parsed.host, parsed.port, timeout=timeout)
        except TimeoutError as e:
            return [DiagnosticResult(
                "Target",
                "warning",
                f"{parsed} not reachable",
                details=str(e),
                recommendation="Start the server or use 'tpu-harness run', which launches it"
            )]
        return [DiagnosticResult("Target", "pass", f"{parsed} reachable", details=f"connected after {waited:.2f}s")]

    @staticmethod
    def _display_results(results: list[DiagnosticResult], verbose: bool) -> None:
        """Display diagnostic results in a formatted way."""
        print("\nDiagnostic Results:")
        print("-" * 60)

        for result in results:
            print(f"[{result.status.upper():7}] {result.name}: {result.message}")

            if verbose and result.details:
                print(f"          Details: {result.details}")

            if result.recommendation:
                print(f"          Recommendation: {result.recommendation}")

    @staticmethod
    def _generate_summary(results: list[DiagnosticResult]) -> str:
        """Generate a summary of diagnostic results."""
        total = len(results)
        passed = sum(1 for r in results if r.status == 'pass')
        warnings = sum(1 for r in results if r.status == 'warning')
        failed = sum(1 for r in results if r.status == 'fail')

        summary = f"\nSummary: {passed}/{total} checks passed"
        if warnings > 0:
            summary += f", {warnings} warnings"
        if failed > 0:
            summary += f", {failed} failures"

        if failed > 0:
            summary += "\nCritical issues detected - the harness will not run"
        elif warnings > 0:
            summary += "\nThe harness will run, possibly on the host CPU only"
        else:
            summary += "\nReady to run against the accelerator"

        return summary

    @staticmethod
    def _save_report(results: list[DiagnosticResult], output_path: str, verbose: bool) -> None:
        """Save diagnostic report to file."""
        if verbose:
            print(f"Saving diagnostic report to: {output_path}")

        report = {
            'timestamp': time.time(),
            'system_info': {
                'platform': platform.platform(),
                'python_version': platform.python_version(),
                'pytorch_version': torch.__version__,
                'torch_xla_version': xla_compat.get_torch_xla_version(),
            },
            'diagnostics': [asdict(r) for r in results],
        }

        with open(output_path, 'w') as f:
            json.dump(report, f, indent=2)
