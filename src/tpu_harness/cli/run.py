"""
Scenario commands for the TPU Harness CLI.

``run`` brings up the server and session, runs the selected built-in
scenarios and tears everything down; ``list`` prints the scenario names.
"""

import argparse
import json
import shlex

from ..config import HarnessConfig, ServerConfig, SessionConfig
from ..harness import AcceleratorBootstrap, ScenarioReport, ScenarioRunner
from ..logging_config import configure_logging
from ..scenarios import BUILTIN_SCENARIOS, default_scenarios


class RunCommand:
    """Run built-in scenarios against a target."""

    @staticmethod
    def register(subparsers) -> None:
        parser = subparsers.add_parser(
            'run',
            help='Run the built-in scenarios against an accelerator target',
            description='Launch the server, open a session, run scenarios, tear down',
        )

        parser.add_argument(
            '--target',
            type=str,
            help='Session target (grpc://host:port or local://device); '
                 'defaults to $TPU_HARNESS_TARGET, $COLAB_TPU_ADDR or grpc://localhost:8470'
        )
        parser.add_argument(
            '--server-cmd',
            type=str,
            help='Server command line (default: xrt_server)'
        )
        parser.add_argument(
            '--no-server',
            action='store_true',
            help='Do not launch a server; connect to an already running one'
        )
        parser.add_argument(
            '--connect-timeout',
            type=float,
            default=None,
            help='Seconds to wait for the target to accept connections'
        )
        parser.add_argument(
            '--require-accelerator',
            action='store_true',
            help='Fail instead of falling back to the host CPU when PyTorch/XLA is missing'
        )
        parser.add_argument(
            '--scenario', '-s',
            action='append',
            choices=sorted(BUILTIN_SCENARIOS),
            help='Scenario to run (repeatable; default: all)'
        )
        parser.add_argument(
            '--json',
            action='store_true',
            help='Print the report as JSON'
        )
        parser.add_argument(
            '--output', '-o',
            type=str,
            help='Save the JSON report to a file'
        )
        parser.add_argument(
            '--verbose', '-v',
            action='store_true',
            help='Enable debug logging and show tracebacks of failures'
        )
        parser.add_argument(
            '--json-logs',
            action='store_true',
            help='Emit log records as JSON lines on stderr'
        )

    @staticmethod
    def build_config(args) -> HarnessConfig:
        config = HarnessConfig.from_environment()

        session_kwargs = {
            'target': args.target or config.session.target,
            'require_accelerator': args.require_accelerator,
        }
        if args.connect_timeout is not None:
            session_kwargs['connect_timeout'] = args.connect_timeout
        config.session = SessionConfig(**session_kwargs)

        if args.server_cmd:
            config.server = ServerConfig(command=shlex.split(args.server_cmd))
        if args.no_server:
            config.server = ServerConfig(command=config.server.command, launch=False)

        if args.verbose:
            config.log_level = 'DEBUG'
        if args.json_logs:
            config.json_logs = True
        return config

    @staticmethod
    def execute(args) -> int:
        config = RunCommand.build_config(args)
        configure_logging(config.log_level, json_format=config.json_logs)
        scenarios = default_scenarios(args.scenario)

        if not args.json:
            print(f"TPU Harness: {len(scenarios)} scenarios against {config.session.target}")
            print("=" * 60)

        with AcceleratorBootstrap(config) as session:
            report = ScenarioRunner().run(session, scenarios)

        if args.json:
            print(json.dumps(report.to_dict(), indent=2))
        else:
            RunCommand._display_report(report, args.verbose)

        if args.output:
            with open(args.output, 'w') as f:
                json.dump(report.to_dict(), f, indent=2)

        return 0 if report.passed else 1

    @staticmethod
    def _display_report(report: ScenarioReport, verbose: bool) -> None:
        for result in report.results:
            print(f"[{result.status.upper():5}] {result.name} ({result.duration:.3f}s)")
            if result.message:
                print(f"        {result.message}")
            if verbose and result.details:
                print(result.details)
        print("-" * 60)
        print(report.summary())


class ListCommand:
    """List built-in scenarios."""

    @staticmethod
    def register(subparsers) -> None:
        subparsers.add_parser(
            'list',
            help='List the built-in scenarios',
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )

    @staticmethod
    def execute(args) -> int:
        width = max(len(name) for name in BUILTIN_SCENARIOS)
        for name, scenario in BUILTIN_SCENARIOS.items():
            print(f"{name:<{width}}  {scenario.description}")
        return 0
