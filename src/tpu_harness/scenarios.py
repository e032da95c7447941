"""
Built-in Scenario Suite

Small programs that exercise the compile / execute / verify path end to
end: random number generation, gradients through a convolution, tuple
results, scalar broadcasting, index-vector gathers and tiling.
"""

from typing import Dict, List, Optional, Sequence

import numpy as np
import torch
import torch.nn as nn

from .arrays import DeviceArray, RemoteStruct, TensorSpec
from .autodiff import functional_model, pullback
from .exceptions import ConfigurationError
from .harness import Scenario, assert_device_resident, assert_matches, assert_spec
from .session import Session


class Rectified(nn.Module):
    """Wraps a layer and applies ReLU to its output."""

    def __init__(self, m: nn.Module):
        super().__init__()
        self.m = m

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return torch.relu(self.m(x))


def rng_scenario(session: Session) -> None:
    """A 5x5 uniform random node stays device-resident with the declared spec."""
    lo = session.transfer(np.float32(0.0))
    hi = session.transfer(np.float32(1.0))

    def uniform(lo, hi):
        return torch.rand((5, 5), dtype=lo.dtype, device=lo.device) * (hi - lo) + lo

    result = session.run(session.compile(uniform, lo, hi), lo, hi)

    if not isinstance(result, DeviceArray):
        raise AssertionError(f"expected DeviceArray, got {type(result).__name__}")
    assert_spec(result, TensorSpec("float32", (5, 5)))
    values = result.to_local()
    if not ((values >= 0.0) & (values < 1.0)).all():
        raise AssertionError(f"values outside [0, 1): {values}")


def conv_fixture():
    """``Rectified(Conv2d(1, 1, 1))`` with weight -1 and bias 0, and its input."""
    model = Rectified(nn.Conv2d(1, 1, kernel_size=1))
    with torch.no_grad():
        model.m.weight.fill_(-1.0)
        model.m.bias.zero_()
    x = np.array([[1.0, -2.0], [-3.0, -4.0]], dtype=np.float32).reshape(1, 1, 2, 2)
    return model, x


def compute_conv_updates(session: Session) -> RemoteStruct:
    """Compile and run the weight gradient of ``sum(model(x))``, seeded with 1."""
    model, x_host = conv_fixture()
    forward, state = functional_model(model)
    params = session.remote_struct(state)
    x = session.transfer(x_host)

    def compute_updates(params, x):
        return pullback(lambda p, x: forward(p, x).sum(), params, x, seed=1.0)

    executable = session.compile(compute_updates, params, x)
    return session.run(executable, params, x)


def conv_weight_gradient_scenario(session: Session) -> None:
    """Gradient of a rectified 1x1 convolution with respect to its weight is -9."""
    grads = compute_conv_updates(session)
    assert_device_resident(grads)
    weight_grad = grads["m.weight"].to_local()
    if weight_grad.shape != (1, 1, 1, 1) or weight_grad.item() != -9.0:
        raise AssertionError(f"expected weight gradient -9, got {weight_grad}")


def tuple_roundtrip_scenario(session: Session) -> None:
    """An identity over two arrays returns a RemoteStruct of two device arrays."""
    rng = np.random.default_rng(0)
    a_host = rng.random((10, 10), dtype=np.float32)
    b_host = rng.random((10, 10), dtype=np.float32)
    a, b = session.transfer(a_host), session.transfer(b_host)

    def pair(a, b):
        return (a, b)

    result = session.run(session.compile(pair, a, b), a, b)

    if not isinstance(result, RemoteStruct):
        raise AssertionError(f"expected RemoteStruct, got {type(result).__name__}")
    fetched = result.fetch()
    if not (isinstance(fetched, tuple) and len(fetched) == 2
            and all(isinstance(v, DeviceArray) for v in fetched)):
        raise AssertionError(f"expected a tuple of two DeviceArrays, got {fetched!r}")
    spec = TensorSpec("float32", (10, 10))
    assert_spec(result, (spec, spec))
    assert_matches(result, (a_host, b_host))


def scalar_broadcast_scenario(session: Session) -> None:
    """Adding two 0-d operands yields a 0-d result."""
    a, b = session.transfer(1), session.transfer(1)

    def add(a, b):
        return a + b

    result = session.run(session.compile(add, a, b), a, b)
    assert_spec(result, TensorSpec("int64", ()))
    assert_matches(result, np.array(2))


def vector_getindex_scenario(session: Session) -> None:
    """Gathering columns with a device-resident index vector matches numpy."""
    source = np.arange(1, 32 * 10 + 1, dtype=np.float32).reshape(10, 32).T.copy()
    idxs = np.array([0, 1, 2, 1, 0], dtype=np.int64)

    def getindex(source, idxs):
        return source[:, idxs]

    s, i = session.transfer(source), session.transfer(idxs)
    result = session.run(session.compile(getindex, s, i), s, i)
    assert_matches(result, source[:, idxs])


def make_repeat_scenario(host: np.ndarray):
    def repeat_scenario(session: Session) -> None:
        def tile(a):
            return a.repeat(2, 2)

        a = session.transfer(host)
        result = session.run(session.compile(tile, a), a)
        assert_matches(result, np.tile(host, (2, 2)))

    return repeat_scenario


BUILTIN_SCENARIOS: Dict[str, Scenario] = {
    scenario.name: scenario for scenario in [
        Scenario("rng", rng_scenario,
                 "uniform random node returns a device-resident float32[5, 5]"),
        Scenario("conv_weight_gradient", conv_weight_gradient_scenario,
                 "pullback through a rectified 1x1 convolution yields weight gradient -9"),
        Scenario("tuple_roundtrip", tuple_roundtrip_scenario,
                 "identity over two arrays returns a RemoteStruct of two DeviceArrays"),
        Scenario("scalar_broadcast", scalar_broadcast_scenario,
                 "0-d + 0-d returns a 0-d DeviceArray"),
        Scenario("vector_getindex", vector_getindex_scenario,
                 "column gather with an index vector matches numpy"),
        Scenario("repeat_square", make_repeat_scenario(np.array([[1.0, 2.0], [3.0, 4.0]], dtype=np.float32)),
                 "2x2 tiling of a square array matches numpy"),
        Scenario("repeat_row", make_repeat_scenario(np.array([[1.0, 2.0]], dtype=np.float32)),
                 "2x2 tiling of a row vector matches numpy"),
    ]
}


def default_scenarios(names: Optional[Sequence[str]] = None) -> List[Scenario]:
    """
    Built-in scenarios in their canonical order, optionally filtered by name.

    Raises:
        ConfigurationError: If a requested name is unknown
    """
    if not names:
        return list(BUILTIN_SCENARIOS.values())

    unknown = [n for n in names if n not in BUILTIN_SCENARIOS]
    if unknown:
        raise ConfigurationError("scenario", unknown, f"known scenarios: {sorted(BUILTIN_SCENARIOS)}")
    return [BUILTIN_SCENARIOS[n] for n in names]
