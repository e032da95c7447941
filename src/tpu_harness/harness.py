"""
Compile-Run-Assert Harness

``AcceleratorBootstrap`` brings up the server process and the session and
guarantees teardown in a fixed order: release device handles, close the
session, kill the server. ``ScenarioRunner`` runs independent
compile / execute / verify scenarios against an open session.
"""

import logging
import time
import traceback
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

import numpy as np
from torch.utils import _pytree as pytree

from .arrays import DeviceArray, RemoteStruct, TensorSpec, to_local
from .config import HarnessConfig
from .server import ServerProcess
from .session import Session

logger = logging.getLogger(__name__)


class AcceleratorBootstrap:
    """
    Scoped acquisition of the accelerator server and session.

    Example:
        with AcceleratorBootstrap(HarnessConfig.from_environment()) as session:
            a = session.transfer(np.arange(4, dtype=np.float32))
            ...
    """

    def __init__(self, config: Optional[HarnessConfig] = None):
        self.config = config or HarnessConfig()
        self.server: Optional[ServerProcess] = None
        self.session: Optional[Session] = None
        self._torn_down = False

    def start(self) -> Session:
        """
        Launch the server (remote targets only) and open the session.

        If opening the session fails the already launched server is killed
        before the error propagates.
        """
        if self.config.should_launch_server:
            self.server = ServerProcess(
                self.config.server.command,
                env=self.config.server.env,
                kill_timeout=self.config.server.kill_timeout,
            )
            self.server.start()

        self.session = Session(self.config.session, self.config.compiler)
        try:
            self.session.open()
        except BaseException:
            self.teardown()
            raise
        return self.session

    def teardown(self) -> None:
        """Release handles, close the session, kill the server. Runs once."""
        if self._torn_down:
            return
        self._torn_down = True

        session, server = self.session, self.server
        try:
            try:
                if session is not None:
                    session.release_handles()
            finally:
                if session is not None:
                    session.close()
        finally:
            if server is not None:
                server.kill()
        logger.debug("Teardown complete")

    @property
    def torn_down(self) -> bool:
        return self._torn_down

    def __enter__(self) -> Session:
        return self.start()

    def __exit__(self, exc_type, exc_value, tb) -> None:
        self.teardown()


def accelerator_session(config: Optional[HarnessConfig] = None) -> AcceleratorBootstrap:
    """Function form of ``AcceleratorBootstrap`` for ``with`` statements."""
    return AcceleratorBootstrap(config)


def tpu_compile(session: Session, fn: Callable, *args: Any, **kwargs: Any):
    """Compile ``fn`` for ``args`` on ``session``."""
    return session.compile(fn, *args, **kwargs)


# =============================================================================
# Verification helpers
# =============================================================================

def assert_device_resident(value: Any) -> None:
    """Fail unless ``value`` is a device-resident handle, not a host value."""
    if not isinstance(value, (DeviceArray, RemoteStruct)):
        raise AssertionError(f"expected a device-resident value, got {type(value).__name__}")


def assert_spec(value: Any, expected: Any) -> None:
    """
    Fail unless the declared TensorSpec structure of ``value`` equals ``expected``.

    ``expected`` is a TensorSpec or a structure of TensorSpecs matching the
    structure returned by ``RemoteStruct.fetch()``.
    """
    assert_device_resident(value)
    actual = value.spec
    if isinstance(expected, TensorSpec) or isinstance(actual, TensorSpec):
        if actual != expected:
            raise AssertionError(f"spec mismatch: {actual} != {expected}")
        return

    actual_leaves, actual_tree = pytree.tree_flatten(actual)
    expected_leaves, expected_tree = pytree.tree_flatten(expected)
    if str(actual_tree) != str(expected_tree):
        raise AssertionError(f"structure mismatch: {actual_tree} != {expected_tree}")
    for i, (a, e) in enumerate(zip(actual_leaves, expected_leaves)):
        if a != e:
            raise AssertionError(f"spec mismatch at leaf {i}: {a} != {e}")


def assert_matches(actual: Any, expected: Any, rtol: float = 0.0, atol: float = 0.0) -> None:
    """
    Compare a device-resident result with an expected host value.

    Exact equality by default; pass ``rtol``/``atol`` for a tolerance check.
    Structures are compared leaf by leaf.
    """
    local = to_local(actual)
    local_leaves, local_tree = pytree.tree_flatten(local)
    expected_leaves, expected_tree = pytree.tree_flatten(expected)
    if str(local_tree) != str(expected_tree):
        raise AssertionError(f"structure mismatch: {local_tree} != {expected_tree}")

    for a, e in zip(local_leaves, expected_leaves):
        if rtol or atol:
            np.testing.assert_allclose(np.asarray(a), np.asarray(e), rtol=rtol, atol=atol)
        else:
            np.testing.assert_array_equal(np.asarray(a), np.asarray(e))


# =============================================================================
# Scenarios
# =============================================================================

@dataclass
class Scenario:
    """A named compile / execute / verify check run against a session."""
    name: str
    body: Callable[[Session], None]
    description: str = ""

    def __call__(self, session: Session) -> None:
        self.body(session)


@dataclass
class ScenarioResult:
    """Outcome of a single scenario."""
    name: str
    status: str  # "pass", "fail", "error"
    duration: float
    message: Optional[str] = None
    details: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.status == "pass"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "duration": self.duration,
            "message": self.message,
        }


@dataclass
class ScenarioReport:
    """Results of one runner pass."""
    results: List[ScenarioResult] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(r.passed for r in self.results)

    @property
    def failures(self) -> List[ScenarioResult]:
        return [r for r in self.results if not r.passed]

    def summary(self) -> str:
        failed = len(self.failures)
        return f"{len(self.results) - failed} passed, {failed} failed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "summary": self.summary(),
            "results": [r.to_dict() for r in self.results],
        }


class ScenarioRunner:
    """
    Runs scenarios sequentially. A failing scenario never stops the next.

    Assertion mismatches are recorded as ``fail``; any other exception
    (compilation, execution, transfer) as ``error``. Handles created by a
    scenario are released after it finishes when ``release_between`` is set.
    """

    def __init__(self, release_between: bool = True):
        self.release_between = release_between

    def run(self, session: Session, scenarios: Iterable[Scenario]) -> ScenarioReport:
        report = ScenarioReport()
        for scenario in scenarios:
            result = self.run_one(session, scenario)
            report.results.append(result)
        logger.info("Scenario run finished: %s", report.summary())
        return report

    def run_one(self, session: Session, scenario: Scenario) -> ScenarioResult:
        start = time.time()
        try:
            scenario(session)
        except AssertionError as e:
            result = ScenarioResult(scenario.name, "fail", time.time() - start,
                                    message=str(e) or "assertion failed",
                                    details=traceback.format_exc())
        except Exception as e:
            result = ScenarioResult(scenario.name, "error", time.time() - start,
                                    message=f"{type(e).__name__}: {e}",
                                    details=traceback.format_exc())
        else:
            result = ScenarioResult(scenario.name, "pass", time.time() - start)
        finally:
            if self.release_between and session.is_open:
                session.release_handles()

        log = logger.info if result.passed else logger.error
        log("Scenario %s: %s (%.3fs)%s", result.name, result.status, result.duration,
            f" - {result.message}" if result.message else "")
        return result
