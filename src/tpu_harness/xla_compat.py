"""
XLA Compatibility Layer

Thin wrappers around the parts of torch_xla the harness touches, working
across the old XRT (``xm.xla_device``/``xm.mark_step``) and the newer
``torch_xla.device``/``torch_xla.sync`` APIs. Every function degrades to a
host-only answer when torch_xla is not installed.
"""

import logging
import os

import torch

logger = logging.getLogger(__name__)

XRT_TPU_CONFIG = "XRT_TPU_CONFIG"


def is_xla_available() -> bool:
    """Check whether torch_xla can be imported."""
    try:
        import torch_xla  # noqa: F401
        return True
    except ImportError:
        return False


def configure_xrt_endpoint(address: str) -> None:
    """
    Point the XRT runtime at a remote TPU worker.

    Mirrors the Colab setup ``XRT_TPU_CONFIG="tpu_worker;0;<host:port>"``.
    An existing value is left untouched.
    """
    if XRT_TPU_CONFIG in os.environ:
        logger.debug("%s already set to %s", XRT_TPU_CONFIG, os.environ[XRT_TPU_CONFIG])
        return
    os.environ[XRT_TPU_CONFIG] = f"tpu_worker;0;{address}"
    logger.debug("%s set to %s", XRT_TPU_CONFIG, os.environ[XRT_TPU_CONFIG])


def get_xla_device() -> torch.device:
    """
    Get the XLA device.

    Returns:
        XLA device, or CPU if torch_xla is not installed
    """
    try:
        import torch_xla
        if hasattr(torch_xla, 'device'):
            return torch_xla.device()

        import torch_xla.core.xla_model as xm
        return xm.xla_device()
    except ImportError:
        return torch.device('cpu')


def sync() -> None:
    """Flush pending XLA operations. No-op without torch_xla."""
    try:
        import torch_xla
        if hasattr(torch_xla, 'sync'):
            torch_xla.sync()
            return

        import torch_xla.core.xla_model as xm
        xm.mark_step()
    except ImportError:
        pass


def get_device_hw_type(device: torch.device) -> str:
    """
    Hardware type behind a device ('TPU', 'GPU', 'CPU' or 'UNKNOWN').
    """
    if device.type != 'xla':
        return device.type.upper()

    try:
        import torch_xla.core.xla_model as xm
        if hasattr(xm, 'xla_device_hw'):
            return xm.xla_device_hw(device)
    except ImportError:
        return 'CPU'

    pjrt_device = os.environ.get('PJRT_DEVICE', '')
    return pjrt_device.upper() or 'UNKNOWN'


def get_torch_xla_version() -> str:
    """Get torch_xla version string."""
    try:
        import torch_xla
        return getattr(torch_xla, '__version__', 'unknown')
    except ImportError:
        return 'not installed'
