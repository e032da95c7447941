"""
Device-Resident Values

``DeviceArray`` is a handle to a tensor living on the session's device,
tagged with a static ``TensorSpec``. ``RemoteStruct`` groups a nested
structure of such handles so it can be passed to, or returned from, a
compiled executable as a unit. Both are owned by the session that created
them and are released when it closes.
"""

from dataclasses import dataclass
from typing import Any, Tuple

import numpy as np
import torch
from torch.utils import _pytree as pytree


@dataclass(frozen=True)
class TensorSpec:
    """Element type and static shape of a device-resident tensor."""
    dtype: str
    shape: Tuple[int, ...]

    @classmethod
    def of(cls, tensor: torch.Tensor) -> "TensorSpec":
        return cls(dtype=str(tensor.dtype).replace("torch.", ""), shape=tuple(tensor.shape))

    @property
    def ndim(self) -> int:
        return len(self.shape)

    def __str__(self) -> str:
        return f"{self.dtype}[{', '.join(str(d) for d in self.shape)}]"


class DeviceArray:
    """
    Handle to a tensor resident on the accelerator.

    Use ``to_local()`` to copy the value back to host memory. After
    ``release()`` the handle no longer references device memory.
    """

    def __init__(self, tensor: torch.Tensor, session=None):
        self._tensor = tensor
        self._spec = TensorSpec.of(tensor)
        self._session = session

    @property
    def tensor(self) -> torch.Tensor:
        if self._tensor is None:
            raise ValueError(f"{self!r} has been released")
        return self._tensor

    @property
    def spec(self) -> TensorSpec:
        return self._spec

    @property
    def dtype(self) -> str:
        return self._spec.dtype

    @property
    def shape(self) -> Tuple[int, ...]:
        return self._spec.shape

    @property
    def ndim(self) -> int:
        return self._spec.ndim

    @property
    def device(self) -> torch.device:
        return self.tensor.device

    @property
    def session(self):
        return self._session

    @property
    def released(self) -> bool:
        return self._tensor is None

    def to_local(self) -> np.ndarray:
        """Copy the value to host memory as a numpy array (0-d for scalars)."""
        tensor = self.tensor.detach()
        # numpy has no bfloat16
        if tensor.dtype == torch.bfloat16:
            tensor = tensor.float()
        return tensor.cpu().numpy()

    def item(self) -> Any:
        return self.to_local().item()

    def release(self) -> None:
        """Drop the device buffer. Idempotent."""
        if self._tensor is None:
            return
        self._tensor = None
        if self._session is not None:
            self._session._forget(self)

    def __array__(self, dtype=None):
        local = self.to_local()
        return local if dtype is None else local.astype(dtype)

    def __repr__(self) -> str:
        state = ", released" if self.released else ""
        return f"DeviceArray{{{self._spec}{state}}}"


class RemoteStruct:
    """
    Nested structure (tuple, list, dict) of ``DeviceArray`` leaves.

    ``fetch()`` returns the structure of handles, ``to_local()`` the same
    structure with host arrays in place of handles.
    """

    def __init__(self, tree: Any, session=None):
        leaves, _ = pytree.tree_flatten(tree)
        for leaf in leaves:
            if not isinstance(leaf, DeviceArray):
                raise TypeError(f"RemoteStruct leaves must be DeviceArray, got {type(leaf).__name__}")
        self._tree = tree
        self._session = session

    @property
    def session(self):
        return self._session

    @property
    def leaves(self):
        return pytree.tree_flatten(self._tree)[0]

    @property
    def spec(self) -> Any:
        return pytree.tree_map(lambda leaf: leaf.spec, self._tree)

    def fetch(self) -> Any:
        return self._tree

    def to_local(self) -> Any:
        return pytree.tree_map(lambda leaf: leaf.to_local(), self._tree)

    def release(self) -> None:
        for leaf in self.leaves:
            leaf.release()

    def __getitem__(self, key):
        value = self._tree[key]
        if isinstance(value, DeviceArray):
            return value
        return RemoteStruct(value, self._session)

    def __len__(self) -> int:
        return len(self._tree)

    def __repr__(self) -> str:
        return f"RemoteStruct({self.spec})"


def to_local(value: Any) -> Any:
    """
    Convert a device-resident value to host memory.

    Handles ``DeviceArray``, ``RemoteStruct`` and nested containers of them;
    any other leaf is returned unchanged.
    """
    if isinstance(value, (DeviceArray, RemoteStruct)):
        return value.to_local()
    return pytree.tree_map(
        lambda leaf: leaf.to_local() if isinstance(leaf, (DeviceArray, RemoteStruct)) else leaf,
        value,
    )
