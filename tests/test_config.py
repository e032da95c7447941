"""
Tests for harness configuration and target parsing.
"""

import pytest

from tpu_harness.config import (
    DEFAULT_TARGET,
    CompilerConfig,
    HarnessConfig,
    ServerConfig,
    SessionConfig,
    Target,
    TargetScheme,
)
from tpu_harness.exceptions import ConfigurationError


class TestTarget:
    """Test target string parsing."""

    def test_parse_grpc(self):
        target = Target.parse("grpc://localhost:8470")
        assert target.scheme == TargetScheme.GRPC
        assert target.host == "localhost"
        assert target.port == 8470
        assert target.is_remote
        assert target.address == "localhost:8470"
        assert str(target) == "grpc://localhost:8470"

    def test_parse_local(self):
        target = Target.parse("local://cpu")
        assert target.scheme == TargetScheme.LOCAL
        assert target.host == "cpu"
        assert target.port is None
        assert not target.is_remote
        assert str(target) == "local://cpu"

    def test_local_defaults_to_cpu(self):
        assert Target.parse("local://").host == "cpu"

    def test_scheme_is_case_insensitive(self):
        assert Target.parse("GRPC://host:1").scheme == TargetScheme.GRPC

    @pytest.mark.parametrize("value", [
        "localhost:8470",
        "http://localhost:8470",
        "grpc://localhost",
        "grpc://:8470",
        "grpc://localhost:port",
        "grpc://localhost:0",
        "grpc://localhost:70000",
    ])
    def test_invalid_targets(self, value):
        with pytest.raises(ConfigurationError) as exc_info:
            Target.parse(value)
        assert exc_info.value.details["parameter"] == "target"


class TestComponentConfigs:
    """Test validation of individual config sections."""

    def test_server_defaults(self):
        config = ServerConfig()
        assert config.command == ["xrt_server"]
        assert config.launch

    def test_server_command_string_is_split(self):
        config = ServerConfig(command="xrt_server --port 8470")
        assert config.command == ["xrt_server", "--port", "8470"]

    def test_server_empty_command_rejected(self):
        with pytest.raises(ConfigurationError):
            ServerConfig(command=[])

    def test_server_empty_command_allowed_without_launch(self):
        assert ServerConfig(command=[], launch=False).command == []

    def test_server_kill_timeout_positive(self):
        with pytest.raises(ConfigurationError):
            ServerConfig(kill_timeout=0)

    def test_session_defaults(self):
        config = SessionConfig()
        assert config.target == DEFAULT_TARGET
        assert config.parsed_target.port == 8470
        assert not config.require_accelerator

    def test_session_validates_target_eagerly(self):
        with pytest.raises(ConfigurationError):
            SessionConfig(target="nonsense")

    def test_session_timeouts_validated(self):
        with pytest.raises(ConfigurationError):
            SessionConfig(connect_timeout=-1)
        with pytest.raises(ConfigurationError):
            SessionConfig(poll_interval=0)

    def test_compiler_cache_size(self):
        with pytest.raises(ConfigurationError):
            CompilerConfig(cache_size=0)


class TestHarnessConfig:
    """Test top-level configuration construction."""

    def test_default_launches_server(self):
        assert HarnessConfig().should_launch_server

    def test_for_local(self):
        config = HarnessConfig.for_local()
        assert config.session.target == "local://cpu"
        assert not config.should_launch_server

    def test_local_target_never_launches(self):
        config = HarnessConfig(session=SessionConfig(target="local://cpu"))
        assert config.server.launch
        assert not config.should_launch_server

    def test_from_environment_defaults(self, clean_env):
        config = HarnessConfig.from_environment({})
        assert config.session.target == DEFAULT_TARGET
        assert config.should_launch_server
        assert config.log_level == "INFO"
        assert not config.json_logs

    @pytest.mark.parametrize("value,expected", [("1", True), ("true", True), ("0", False), ("", False)])
    def test_from_environment_json_logs(self, value, expected):
        config = HarnessConfig.from_environment({"TPU_HARNESS_JSON_LOGS": value})
        assert config.json_logs is expected

    def test_from_environment_colab(self):
        config = HarnessConfig.from_environment({"COLAB_TPU_ADDR": "10.0.0.2:8470"})
        assert config.session.target == "grpc://10.0.0.2:8470"
        assert not config.should_launch_server

    def test_from_environment_overrides(self):
        config = HarnessConfig.from_environment({
            "COLAB_TPU_ADDR": "10.0.0.2:8470",
            "TPU_HARNESS_TARGET": "grpc://127.0.0.1:9000",
            "TPU_HARNESS_SERVER": "my_server --flag",
            "TPU_HARNESS_LOG_LEVEL": "debug",
        })
        assert config.session.target == "grpc://127.0.0.1:9000"
        assert config.server.command == ["my_server", "--flag"]
        assert config.should_launch_server
        assert config.log_level == "DEBUG"

    def test_running_on_colab(self):
        assert HarnessConfig.running_on_colab({"COLAB_GPU": "0"})
        assert HarnessConfig.running_on_colab({"COLAB_TPU_ADDR": "x:1"})
        assert not HarnessConfig.running_on_colab({})

    def test_to_dict(self):
        data = HarnessConfig.for_local().to_dict()
        assert data["session"]["target"] == "local://cpu"
        assert data["server"]["launch"] is False
        assert data["compiler"]["use_cache"] is True
