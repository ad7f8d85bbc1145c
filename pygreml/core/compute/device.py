"""
Device detection for choosing a likelihood evaluator.

PyTorch is optional: without it the only device is the CPU.
"""

import platform
from dataclasses import dataclass
from typing import Literal


@dataclass(frozen=True)
class DeviceInfo:
    """
    A compute device.

    Attributes:
        device_type: 'cpu', 'cuda' or 'mps'
        device_index: CUDA ordinal (None for CPU)
        name: Human-readable device name
        memory_bytes: Total device memory, if known
    """
    device_type: Literal['cpu', 'cuda', 'mps']
    device_index: int | None
    name: str
    memory_bytes: int | None = None

    @property
    def is_gpu(self) -> bool:
        return self.device_type != 'cpu'

    def __str__(self) -> str:
        if not self.is_gpu:
            return f"CPU ({self.name})"
        mem = ""
        if self.memory_bytes is not None:
            mem = f", {self.memory_bytes / 1024 ** 3:.1f}GB"
        return f"{self.device_type.upper()}:{self.device_index} ({self.name}{mem})"


def detect_gpu() -> DeviceInfo | None:
    """The preferred GPU (CUDA before MPS), or None if there is none."""
    try:
        import torch
    except ImportError:
        return None

    if torch.cuda.is_available():
        idx = torch.cuda.current_device()
        props = torch.cuda.get_device_properties(idx)
        return DeviceInfo('cuda', idx, props.name, props.total_memory)

    if hasattr(torch.backends, 'mps') and torch.backends.mps.is_available():
        return DeviceInfo('mps', 0, 'Apple Silicon GPU')

    return None


def cpu_device() -> DeviceInfo:
    return DeviceInfo('cpu', None, platform.processor() or platform.machine() or 'unknown')


def select_device(prefer: Literal['cpu', 'gpu', 'auto'] = 'auto') -> DeviceInfo:
    """
    Resolve a device preference.

    'cpu' always gives the CPU, 'gpu' requires a GPU, 'auto' takes a GPU
    when there is one.

    Raises:
        RuntimeError: If 'gpu' is requested and none is available.
        ValueError: On an unknown preference.
    """
    if prefer == 'cpu':
        return cpu_device()
    if prefer not in ('gpu', 'auto'):
        raise ValueError(f"Unknown device preference: {prefer!r}")

    gpu = detect_gpu()
    if gpu is not None:
        return gpu
    if prefer == 'gpu':
        raise RuntimeError(
            "GPU requested but no GPU available. "
            "Install PyTorch with CUDA or MPS support, or use backend='cpu'."
        )
    return cpu_device()
