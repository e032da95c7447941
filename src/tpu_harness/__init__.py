"""
TPU Harness

Compile / execute / verify harness for running tensor programs and models
on an accelerator behind a remote execution service.

Example:
    ```python
    import numpy as np
    from tpu_harness import HarnessConfig, accelerator_session

    with accelerator_session(HarnessConfig.from_environment()) as session:
        a = session.transfer(np.ones((2, 2), dtype=np.float32))
        executable = session.compile(lambda x: x * 2, a)
        print(session.run(executable, a).to_local())
    ```
"""

from .arrays import DeviceArray, RemoteStruct, TensorSpec, to_local
from .autodiff import functional_model, pullback, value_and_pullback
from .compiler import Executable, XLACompiler
from .config import (
    CompilerConfig,
    HarnessConfig,
    ServerConfig,
    SessionConfig,
    Target,
    TargetScheme,
)
from .exceptions import (
    CompilationError,
    ConfigurationError,
    DeviceNotAvailableError,
    ExecutionError,
    HarnessError,
    ServerLaunchError,
    SessionClosedError,
    SessionError,
    TransferError,
)
from .harness import (
    AcceleratorBootstrap,
    Scenario,
    ScenarioReport,
    ScenarioResult,
    ScenarioRunner,
    accelerator_session,
    assert_device_resident,
    assert_matches,
    assert_spec,
    tpu_compile,
)
from .model_mapping import (
    DevicePlacementVisitor,
    LayerKind,
    LayerVisitor,
    classify_layer,
    compile_inference,
    map_to_device,
    model_state,
    run_inference,
)
from .scenarios import BUILTIN_SCENARIOS, default_scenarios
from .server import ServerProcess
from .session import Session

__version__ = "0.1.0"

__all__ = [
    # Values
    'DeviceArray',
    'RemoteStruct',
    'TensorSpec',
    'to_local',
    # Autodiff
    'functional_model',
    'pullback',
    'value_and_pullback',
    # Compiler
    'Executable',
    'XLACompiler',
    # Config
    'CompilerConfig',
    'HarnessConfig',
    'ServerConfig',
    'SessionConfig',
    'Target',
    'TargetScheme',
    # Exceptions
    'CompilationError',
    'ConfigurationError',
    'DeviceNotAvailableError',
    'ExecutionError',
    'HarnessError',
    'ServerLaunchError',
    'SessionClosedError',
    'SessionError',
    'TransferError',
    # Harness
    'AcceleratorBootstrap',
    'Scenario',
    'ScenarioReport',
    'ScenarioResult',
    'ScenarioRunner',
    'accelerator_session',
    'assert_device_resident',
    'assert_matches',
    'assert_spec',
    'tpu_compile',
    # Model mapping
    'DevicePlacementVisitor',
    'LayerKind',
    'LayerVisitor',
    'classify_layer',
    'compile_inference',
    'map_to_device',
    'model_state',
    'run_inference',
    # Scenarios
    'BUILTIN_SCENARIOS',
    'default_scenarios',
    # Process / session
    'ServerProcess',
    'Session',
]
