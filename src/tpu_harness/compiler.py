"""
Ahead-of-Time Compiler for Device-Resident Functions

Traces a Python function over device-resident arguments into a
``torch.fx`` graph specialised to the concrete argument shapes and dtypes.
The resulting ``Executable`` is the opaque compiled artifact handed to
``Session.run``; on an XLA device the graph lowers to HLO when executed.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import torch
from torch.fx.experimental.proxy_tensor import make_fx
from torch.utils import _pytree as pytree

from .arrays import DeviceArray, RemoteStruct, TensorSpec
from .cache_utils import ExecutableCache
from .config import CompilerConfig
from .exceptions import CompilationError

logger = logging.getLogger(__name__)


def function_name(fn: Callable) -> str:
    return getattr(fn, "__qualname__", None) or getattr(fn, "__name__", None) or repr(fn)


def flatten_arguments(args: Sequence[Any]) -> Tuple[List[DeviceArray], pytree.TreeSpec]:
    """
    Flatten positional arguments into their ``DeviceArray`` leaves.

    ``RemoteStruct`` arguments contribute their whole structure. Any leaf
    that is not device-resident raises ``TypeError``.
    """
    tree = tuple(arg.fetch() if isinstance(arg, RemoteStruct) else arg for arg in args)
    leaves, spec = pytree.tree_flatten(tree)
    for leaf in leaves:
        if not isinstance(leaf, DeviceArray):
            raise TypeError(
                f"arguments must be device-resident (DeviceArray or RemoteStruct), "
                f"got {type(leaf).__name__}"
            )
    return leaves, spec


@dataclass
class Executable:
    """
    Compiled executable for one function signature.

    Attributes:
        name: Qualified name of the compiled function
        graph_module: Traced graph, called with the flattened input tensors
        in_spec: Tree structure of the positional arguments
        out_spec: Tree structure of the result
        input_specs: TensorSpec of every flattened input
        output_specs: TensorSpec of every flattened output
        device: Device the executable was compiled for
        compile_time: Seconds spent tracing
    """
    name: str
    graph_module: torch.fx.GraphModule
    in_spec: pytree.TreeSpec
    out_spec: pytree.TreeSpec
    input_specs: Tuple[TensorSpec, ...]
    output_specs: Tuple[TensorSpec, ...]
    device: torch.device
    compile_time: float = 0.0

    @property
    def code(self) -> str:
        """Python rendering of the traced graph."""
        return self.graph_module.code

    @property
    def output_structure(self) -> Any:
        """Declared result structure with TensorSpec leaves."""
        return pytree.tree_unflatten(list(self.output_specs), self.out_spec)

    @property
    def returns_single_array(self) -> bool:
        return self.out_spec.is_leaf()

    def __call__(self, *tensors: torch.Tensor) -> List[torch.Tensor]:
        return list(self.graph_module(*tensors))

    def __repr__(self) -> str:
        inputs = ", ".join(str(s) for s in self.input_specs)
        outputs = ", ".join(str(s) for s in self.output_specs)
        return f"Executable({self.name}: ({inputs}) -> ({outputs}) on {self.device})"


class XLACompiler:
    """
    Compiler for functions over device-resident values.

    Compiled executables are cached per signature: the function object, the
    argument tree structure and every argument's TensorSpec.
    """

    def __init__(self, device: torch.device, config: Optional[CompilerConfig] = None):
        self.device = device
        self.config = config or CompilerConfig()
        self._cache: ExecutableCache[Executable] = ExecutableCache(self.config.cache_size)
        self._compilation_stats: Dict[str, Dict[str, float]] = {}

    def compile(self, fn: Callable, *args: Any, use_cache: Optional[bool] = None) -> Executable:
        """
        Compile ``fn`` for the concrete shapes and dtypes of ``args``.

        Args:
            fn: Pure function over tensors; receives plain tensors in the
                same structure as ``args`` and returns a tensor or a tree of
                tensors
            *args: DeviceArray or RemoteStruct operands
            use_cache: Override the configured cache behaviour

        Returns:
            Compiled executable

        Raises:
            CompilationError: If an argument is not device-resident or tracing fails
        """
        name = function_name(fn)
        use_cache = self.config.use_cache if use_cache is None else use_cache

        try:
            leaves, in_spec = flatten_arguments(args)
        except TypeError as e:
            raise CompilationError(name, str(e)) from e

        input_specs = tuple(leaf.spec for leaf in leaves)
        cache_key = (fn, str(in_spec), input_specs)
        if use_cache:
            try:
                hash(cache_key)
            except TypeError:
                logger.debug("%s is not hashable, compiling without cache", name)
                use_cache = False

        if use_cache:
            cached = self._cache.lookup(cache_key)
            if cached is not None:
                logger.debug("Using cached executable for %s", name)
                return cached

        start_time = time.time()
        executable = self._trace(fn, name, leaves, in_spec, input_specs)
        executable.compile_time = time.time() - start_time

        if use_cache:
            self._cache.store(cache_key, executable)
        self._compilation_stats[name] = {
            'compilation_time': executable.compile_time,
            'timestamp': time.time(),
            'num_nodes': len(executable.graph_module.graph.nodes),
        }

        logger.info("Compiled %s in %.3fs", executable, executable.compile_time)
        return executable

    def _trace(self, fn: Callable, name: str, leaves: List[DeviceArray],
               in_spec: pytree.TreeSpec, input_specs: Tuple[TensorSpec, ...]) -> Executable:
        captured: Dict[str, Any] = {}

        def flat_fn(*tensors):
            call_args = pytree.tree_unflatten(list(tensors), in_spec)
            result = fn(*call_args)

            out_leaves, out_spec = pytree.tree_flatten(result)
            for leaf in out_leaves:
                if not isinstance(leaf, torch.Tensor):
                    raise TypeError(f"function must return tensors, got {type(leaf).__name__}")

            captured['out_spec'] = out_spec
            captured['output_specs'] = tuple(TensorSpec.of(t) for t in out_leaves)
            return out_leaves

        tensors = [leaf.tensor for leaf in leaves]
        try:
            graph_module = make_fx(flat_fn, tracing_mode="real")(*tensors)
        except Exception as e:
            raise CompilationError(name, f"{type(e).__name__}: {e}") from e

        return Executable(
            name=name,
            graph_module=graph_module,
            in_spec=in_spec,
            out_spec=captured['out_spec'],
            input_specs=input_specs,
            output_specs=captured['output_specs'],
            device=self.device,
        )

    def get_compilation_stats(self) -> Dict[str, Any]:
        """Get compilation statistics."""
        total = len(self._compilation_stats)
        total_time = sum(stats['compilation_time'] for stats in self._compilation_stats.values())

        return {
            'total_compiled_functions': total,
            'total_compilation_time': total_time,
            'average_compilation_time': total_time / total if total > 0 else 0.0,
            'cache': self._cache.get_stats(),
            'device': str(self.device),
        }

    def clear_cache(self) -> None:
        self._cache.clear()
        self._compilation_stats.clear()

    def __repr__(self) -> str:
        return f"XLACompiler(device={self.device}, cached_executables={len(self._cache)})"
