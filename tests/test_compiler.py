"""
Tests for ahead-of-time compilation of device-resident functions.
"""

from dataclasses import dataclass

import numpy as np
import pytest
import torch

from tpu_harness.arrays import TensorSpec
from tpu_harness.compiler import XLACompiler, flatten_arguments, function_name
from tpu_harness.config import CompilerConfig, SessionConfig
from tpu_harness.exceptions import CompilationError
from tpu_harness.session import Session


def scale_and_shift(x, y):
    return x * 2 + y


class TestFlattenArguments:

    def test_flatten_device_arrays(self, session):
        a = session.transfer(np.zeros(2))
        rs = session.remote_struct({"p": np.ones(3)})
        leaves, spec = flatten_arguments((a, rs))
        assert len(leaves) == 2
        assert spec.num_leaves == 2

    def test_rejects_host_values(self, session):
        with pytest.raises(TypeError, match="device-resident"):
            flatten_arguments((np.zeros(2),))


class TestXLACompiler:
    """Test compilation, caching, and error reporting."""

    def test_compile_produces_executable(self, session):
        a = session.transfer(np.ones((2, 3), dtype=np.float32))
        b = session.transfer(np.ones((2, 3), dtype=np.float32))
        exe = session.compile(scale_and_shift, a, b)

        assert exe.name == "scale_and_shift"
        assert exe.input_specs == (TensorSpec("float32", (2, 3)), TensorSpec("float32", (2, 3)))
        assert exe.output_specs == (TensorSpec("float32", (2, 3)),)
        assert exe.returns_single_array
        assert exe.output_structure == TensorSpec("float32", (2, 3))
        assert exe.device == session.device
        assert exe.compile_time >= 0.0
        assert "mul" in exe.code
        assert "scale_and_shift" in repr(exe)

    def test_executable_is_deterministic(self, session):
        a = session.transfer(np.arange(6, dtype=np.float32))
        b = session.transfer(np.full(6, 0.5, dtype=np.float32))
        exe = session.compile(scale_and_shift, a, b)
        first = session.run(exe, a, b).to_local()
        second = session.run(exe, a, b).to_local()
        np.testing.assert_array_equal(first, second)
        np.testing.assert_array_equal(first, np.arange(6, dtype=np.float32) * 2 + 0.5)

    def test_cache_hit_for_same_signature(self, session):
        a = session.transfer(np.ones(4, dtype=np.float32))
        b = session.transfer(np.zeros(4, dtype=np.float32))
        first = session.compile(scale_and_shift, a, b)
        second = session.compile(scale_and_shift, b, a)
        assert first is second
        assert session.compiler.get_compilation_stats()['cache']['hits'] == 1

    def test_new_shape_recompiles(self, session):
        a = session.transfer(np.ones(4, dtype=np.float32))
        c = session.transfer(np.ones(5, dtype=np.float32))
        first = session.compile(scale_and_shift, a, a)
        second = session.compile(scale_and_shift, c, c)
        assert first is not second
        assert second.input_specs[0].shape == (5,)

    def test_new_dtype_recompiles(self, session):
        a = session.transfer(np.ones(4, dtype=np.float32))
        d = session.transfer(np.ones(4, dtype=np.float64))
        assert session.compile(scale_and_shift, a, a) is not session.compile(scale_and_shift, d, d)

    def test_cache_disabled(self, session):
        a = session.transfer(np.ones(4, dtype=np.float32))
        first = session.compile(scale_and_shift, a, a, use_cache=False)
        second = session.compile(scale_and_shift, a, a, use_cache=False)
        assert first is not second
        np.testing.assert_array_equal(session.run(first, a, a).to_local(),
                                      session.run(second, a, a).to_local())

    def test_unhashable_callable_compiles_uncached(self, session):
        @dataclass
        class Scale:
            k: float

            def __call__(self, x):
                return x * self.k

        a = session.transfer(np.arange(3, dtype=np.float32))
        first = session.compile(Scale(2.0), a)
        second = session.compile(Scale(2.0), a)
        assert first is not second
        assert session.compiler.get_compilation_stats()['cache']['size'] == 0
        np.testing.assert_array_equal(session.run(first, a).to_local(),
                                      np.array([0.0, 2.0, 4.0], dtype=np.float32))

    def test_cache_bounded(self):
        compiler = XLACompiler(torch.device("cpu"), CompilerConfig(cache_size=1))
        with Session(SessionConfig(target="local://cpu")) as session:
            a = session.transfer(np.ones(2, dtype=np.float32))
            compiler.compile(lambda x: x + 1, a)
            compiler.compile(lambda x: x + 2, a)
        stats = compiler.get_compilation_stats()
        assert stats['cache']['size'] == 1
        assert stats['cache']['evictions'] == 1
        assert stats['total_compiled_functions'] >= 1

    def test_host_argument_is_compilation_error(self, session):
        with pytest.raises(CompilationError, match="device-resident"):
            session.compile(scale_and_shift, np.ones(2), np.ones(2))

    def test_trace_failure(self, session):
        a = session.transfer(np.ones((2, 3), dtype=np.float32))
        b = session.transfer(np.ones((4, 5), dtype=np.float32))
        with pytest.raises(CompilationError) as exc_info:
            session.compile(torch.matmul, a, b)
        assert "matmul" in exc_info.value.function_name

    def test_non_tensor_output(self, session):
        a = session.transfer(np.ones(2, dtype=np.float32))
        with pytest.raises(CompilationError, match="must return tensors"):
            session.compile(lambda x: 3, a)

    def test_clear_cache(self, session):
        a = session.transfer(np.ones(2, dtype=np.float32))
        session.compile(scale_and_shift, a, a)
        session.compiler.clear_cache()
        assert session.compiler.get_compilation_stats()['cache']['size'] == 0
        assert "cached_executables=0" in repr(session.compiler)


def test_function_name():
    assert function_name(scale_and_shift) == "scale_and_shift"
    assert function_name(lambda: None) == "test_function_name.<locals>.<lambda>"
