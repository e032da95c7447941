"""
Tests for the tpu-harness command line interface.
"""

import json
import logging
import shlex
import sys

import pytest

from tpu_harness.cli import main
from tpu_harness.logging_config import ROOT_LOGGER, JSONFormatter


@pytest.fixture(autouse=True)
def reset_harness_logger(clean_env):
    yield
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


class TestMain:

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert "tpu-harness" in capsys.readouterr().out

    def test_help_lists_commands(self, capsys):
        with pytest.raises(SystemExit):
            main(["--help"])
        out = capsys.readouterr().out
        for name in ("run", "list", "doctor", "local://cpu"):
            assert name in out

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])
        assert exc_info.value.code == 0
        assert "0.1.0" in capsys.readouterr().out

    def test_list(self, capsys):
        assert main(["list"]) == 0
        out = capsys.readouterr().out
        for name in ("rng", "conv_weight_gradient", "repeat_row"):
            assert name in out


class TestRunCommand:

    def test_run_local(self, capsys):
        code = main(["run", "--target", "local://cpu", "--scenario", "scalar_broadcast",
                     "--scenario", "repeat_square"])
        out = capsys.readouterr().out
        assert code == 0
        assert "scalar_broadcast" in out
        assert "2 passed, 0 failed" in out

    def test_run_all_local(self, capsys):
        assert main(["run", "--target", "local://cpu"]) == 0
        assert "7 passed, 0 failed" in capsys.readouterr().out

    def test_run_json_logs(self, capsys):
        assert main(["run", "--target", "local://cpu", "-s", "rng", "--json-logs"]) == 0
        handler, = logging.getLogger(ROOT_LOGGER).handlers
        assert isinstance(handler.formatter, JSONFormatter)
        lines = [line for line in capsys.readouterr().err.splitlines() if line.startswith("{")]
        assert lines
        assert all(json.loads(line)["logger"].startswith(ROOT_LOGGER) for line in lines)

    def test_json_logs_from_environment(self, monkeypatch):
        monkeypatch.setenv("TPU_HARNESS_JSON_LOGS", "1")
        assert main(["run", "--target", "local://cpu", "-s", "rng"]) == 0
        handler, = logging.getLogger(ROOT_LOGGER).handlers
        assert isinstance(handler.formatter, JSONFormatter)

    def test_run_json_and_output(self, capsys, tmp_path):
        report_path = tmp_path / "report.json"
        code = main(["run", "--target", "local://cpu", "-s", "rng", "--json",
                     "--output", str(report_path)])
        assert code == 0
        printed = json.loads(capsys.readouterr().out)
        saved = json.loads(report_path.read_text())
        assert printed["passed"] is True
        assert saved["results"][0]["name"] == "rng"

    def test_unknown_scenario_rejected_by_parser(self):
        with pytest.raises(SystemExit):
            main(["run", "--scenario", "nope"])

    @pytest.mark.integration
    def test_run_with_server(self, capsys, listening_port, no_xla):
        server_cmd = shlex.join([sys.executable, "-c", "import time; time.sleep(60)"])
        code = main(["run", "--target", f"grpc://127.0.0.1:{listening_port}",
                     "--server-cmd", server_cmd, "-s", "tuple_roundtrip"])
        assert code == 0
        assert "1 passed, 0 failed" in capsys.readouterr().out

    @pytest.mark.integration
    def test_unreachable_target(self, capsys, closed_port):
        code = main(["run", "--no-server", "--target", f"grpc://127.0.0.1:{closed_port}",
                     "--connect-timeout", "0.2"])
        assert code == 1
        assert "Error:" in capsys.readouterr().out

    def test_invalid_target(self, capsys):
        assert main(["run", "--target", "bogus"]) == 1
        assert "Invalid configuration" in capsys.readouterr().out


class TestDoctorCommand:

    def test_basic(self, capsys):
        assert main(["doctor", "--category", "basic"]) == 0
        out = capsys.readouterr().out
        assert "PyTorch Version" in out
        assert "Summary:" in out

    def test_local_target(self, capsys):
        assert main(["doctor", "--category", "target", "--target", "local://cpu"]) == 0
        assert "in-process" in capsys.readouterr().out

    @pytest.mark.integration
    def test_reachable_target(self, capsys, listening_port):
        assert main(["doctor", "--category", "target",
                     "--target", f"grpc://127.0.0.1:{listening_port}"]) == 0
        assert "reachable" in capsys.readouterr().out

    def test_invalid_target_fails(self):
        assert main(["doctor", "--category", "target", "--target", "bogus"]) == 1

    def test_accelerator_without_xla(self, capsys, no_xla):
        assert main(["doctor", "--category", "accelerator"]) == 0
        assert "torch_xla not installed" in capsys.readouterr().out

    def test_report_file(self, tmp_path):
        report_path = tmp_path / "doctor.json"
        main(["doctor", "--category", "basic", "--output", str(report_path)])
        report = json.loads(report_path.read_text())
        assert report["system_info"]["pytorch_version"]
        assert {d["name"] for d in report["diagnostics"]} >= {"Python Version", "PyTorch Version"}
