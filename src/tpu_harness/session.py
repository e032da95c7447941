"""
Accelerator Session

A ``Session`` is the explicit context object every transfer, compile and
run goes through. It resolves the target to a torch device (an XLA device
behind an XRT endpoint, or a local device), owns every ``DeviceArray`` it
hands out and releases them deterministically on close.
"""

import logging
import socket
import time
from typing import Any, Callable, Dict, Optional

import numpy as np
import torch
from torch.utils import _pytree as pytree

from . import xla_compat
from .arrays import DeviceArray, RemoteStruct
from .compiler import Executable, XLACompiler, flatten_arguments
from .config import CompilerConfig, SessionConfig, Target
from .exceptions import (
    DeviceNotAvailableError,
    ExecutionError,
    SessionClosedError,
    SessionError,
    TransferError,
    raise_or_warn,
)

logger = logging.getLogger(__name__)


def wait_for_endpoint(host: str, port: int, timeout: float, poll_interval: float = 0.25) -> float:
    """
    Block until ``host:port`` accepts TCP connections.

    Returns:
        Seconds waited

    Raises:
        TimeoutError: If the endpoint is still refusing after ``timeout`` seconds
    """
    start = time.monotonic()
    deadline = start + timeout
    last_error: Optional[OSError] = None

    while True:
        remaining = deadline - time.monotonic()
        try:
            with socket.create_connection((host, port), timeout=max(remaining, poll_interval)):
                return time.monotonic() - start
        except OSError as e:
            last_error = e

        if time.monotonic() + poll_interval > deadline:
            raise TimeoutError(f"{host}:{port} not reachable after {timeout:.1f}s ({last_error})")
        time.sleep(poll_interval)


class Session:
    """
    Session bound to one accelerator target.

    Example:
        session = Session(SessionConfig(target="grpc://localhost:8470"))
        session.open()
        try:
            a = session.transfer(np.ones((2, 2), dtype=np.float32))
            exe = session.compile(lambda x: x * 2, a)
            print(session.run(exe, a).to_local())
        finally:
            session.close()
    """

    def __init__(self, config: Optional[SessionConfig] = None,
                 compiler_config: Optional[CompilerConfig] = None):
        self.config = config or SessionConfig()
        self.target: Target = self.config.parsed_target
        self._compiler_config = compiler_config or CompilerConfig()

        self._device: Optional[torch.device] = None
        self._compiler: Optional[XLACompiler] = None
        self._handles: Dict[int, DeviceArray] = {}
        self._opened = False
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> "Session":
        """
        Establish the session.

        Raises:
            SessionError: If the endpoint does not come up within ``connect_timeout``
            DeviceNotAvailableError: If an accelerator is required but missing
        """
        if self._closed:
            raise SessionClosedError(str(self.target), "reopen")
        if self._opened:
            return self

        if self.target.is_remote:
            try:
                waited = wait_for_endpoint(
                    self.target.host,
                    self.target.port,
                    self.config.connect_timeout,
                    self.config.poll_interval,
                )
            except TimeoutError as e:
                raise SessionError(str(self.target), str(e)) from e
            logger.debug("Endpoint %s reachable after %.2fs", self.target.address, waited)
            self._device = self._resolve_remote_device()
        else:
            self._device = self._resolve_local_device()

        self._compiler = XLACompiler(self._device, self._compiler_config)
        self._opened = True
        logger.info("Session opened: target=%s, device=%s (%s)", self.target, self._device,
                    xla_compat.get_device_hw_type(self._device))
        return self

    def _resolve_remote_device(self) -> torch.device:
        if not xla_compat.is_xla_available():
            raise_or_warn(
                f"PyTorch/XLA not installed; executing {self.target} workloads on the host CPU",
                DeviceNotAvailableError,
                strict_mode=self.config.require_accelerator,
                log=logger,
                backend="PyTorch/XLA",
                reason="torch_xla is not installed",
            )
            return torch.device("cpu")

        xla_compat.configure_xrt_endpoint(self.target.address)
        return xla_compat.get_xla_device()

    def _resolve_local_device(self) -> torch.device:
        try:
            device = torch.device(self.target.host)
        except RuntimeError as e:
            raise SessionError(str(self.target), f"unknown device '{self.target.host}'") from e

        if device.type == "cuda" and not torch.cuda.is_available():
            raise SessionError(str(self.target), "CUDA is not available")
        if device.type == "xla":
            if not xla_compat.is_xla_available():
                raise DeviceNotAvailableError("PyTorch/XLA", "torch_xla is not installed")
            return xla_compat.get_xla_device()
        return device

    def release_handles(self) -> int:
        """Release every device handle owned by this session. Returns the count."""
        handles = list(self._handles.values())
        for handle in handles:
            handle.release()
        self._handles.clear()
        if handles:
            logger.debug("Released %d device handles", len(handles))
        return len(handles)

    def close(self) -> None:
        """Release outstanding handles and close the session. Idempotent."""
        if self._closed:
            return
        self.release_handles()
        if self._compiler is not None:
            self._compiler.clear_cache()
        self._closed = True
        logger.info("Session closed: target=%s", self.target)

    @property
    def is_open(self) -> bool:
        return self._opened and not self._closed

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def device(self) -> torch.device:
        self._require_open("query the device")
        return self._device

    @property
    def on_accelerator(self) -> bool:
        return self.is_open and self._device.type == "xla"

    @property
    def compiler(self) -> XLACompiler:
        self._require_open("access the compiler")
        return self._compiler

    @property
    def live_handles(self) -> int:
        return len(self._handles)

    def _require_open(self, operation: str) -> None:
        if self._closed:
            raise SessionClosedError(str(self.target), operation)
        if not self._opened:
            raise SessionError(str(self.target), f"session not opened; cannot {operation}")

    def _adopt(self, tensor: torch.Tensor) -> DeviceArray:
        handle = DeviceArray(tensor, session=self)
        self._handles[id(handle)] = handle
        return handle

    def _forget(self, handle: DeviceArray) -> None:
        self._handles.pop(id(handle), None)

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def transfer(self, value: Any, dtype: Optional[torch.dtype] = None) -> DeviceArray:
        """
        Place a host value on the device.

        Args:
            value: numpy array, torch tensor, Python scalar or nested list
            dtype: Optional torch dtype to convert to

        Returns:
            Device-resident handle
        """
        self._require_open("transfer")
        if isinstance(value, DeviceArray):
            value = value.tensor

        try:
            if isinstance(value, np.ndarray):
                tensor = torch.from_numpy(np.ascontiguousarray(value))
            else:
                tensor = torch.as_tensor(value)
            if dtype is not None:
                tensor = tensor.to(dtype)
            tensor = tensor.detach().to(self._device, copy=True)
        except (TypeError, ValueError, RuntimeError) as e:
            raise TransferError(type(value).__name__, str(e)) from e

        return self._adopt(tensor)

    def wrap(self, tensor: torch.Tensor) -> DeviceArray:
        """
        Hand out a tensor that already lives on the session device.

        The handle shares storage with ``tensor``; anything on another
        device is transferred as usual.
        """
        self._require_open("transfer")
        if isinstance(tensor, torch.Tensor) and tensor.device == self._device:
            return self._adopt(tensor.detach())
        return self.transfer(tensor)

    def remote_struct(self, tree: Any) -> RemoteStruct:
        """
        Transfer a nested structure of host values (or handles) as one unit.

        Leaves that are already ``DeviceArray`` handles of this session are
        kept as is; everything else is transferred.
        """
        self._require_open("transfer")

        def place(leaf):
            if isinstance(leaf, DeviceArray) and leaf.session is self:
                return leaf
            return self.transfer(leaf)

        return RemoteStruct(pytree.tree_map(place, tree), session=self)

    # ------------------------------------------------------------------
    # Compile and run
    # ------------------------------------------------------------------

    def compile(self, fn: Callable, *args: Any, use_cache: Optional[bool] = None) -> Executable:
        """Compile ``fn`` for the concrete device-resident ``args``."""
        self._require_open("compile")
        return self._compiler.compile(fn, *args, use_cache=use_cache)

    def run(self, executable: Executable, *args: Any) -> Any:
        """
        Run a compiled executable.

        Returns:
            A ``DeviceArray`` when the function returns a single tensor,
            otherwise a ``RemoteStruct`` with the declared result structure

        Raises:
            ExecutionError: On a signature mismatch or a runtime failure
        """
        self._require_open("run")

        try:
            leaves, in_spec = flatten_arguments(args)
        except TypeError as e:
            raise ExecutionError(executable.name, str(e)) from e

        if str(in_spec) != str(executable.in_spec):
            raise ExecutionError(
                executable.name,
                f"argument structure {in_spec} does not match compiled structure {executable.in_spec}"
            )
        specs = tuple(leaf.spec for leaf in leaves)
        if specs != executable.input_specs:
            raise ExecutionError(
                executable.name,
                f"argument specs ({', '.join(map(str, specs))}) do not match compiled "
                f"({', '.join(map(str, executable.input_specs))})"
            )
        for leaf in leaves:
            if leaf.session is not None and leaf.session is not self:
                raise ExecutionError(executable.name, f"{leaf!r} belongs to another session")

        try:
            with torch.no_grad():
                outputs = executable(*[leaf.tensor for leaf in leaves])
            if self.on_accelerator:
                xla_compat.sync()
        except Exception as e:
            raise ExecutionError(executable.name, f"{type(e).__name__}: {e}") from e

        handles = [self._adopt(t) for t in outputs]
        if executable.returns_single_array:
            return handles[0]
        return RemoteStruct(pytree.tree_unflatten(handles, executable.out_spec), session=self)

    # ------------------------------------------------------------------

    def __enter__(self) -> "Session":
        return self.open()

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else ("open" if self._opened else "new")
        return f"Session(target={self.target}, device={self._device}, state={state}, handles={len(self._handles)})"
