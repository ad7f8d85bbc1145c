"""
Shared compute infrastructure for pygreml.

Model-specific evaluators live in varcomp/backends/; this package holds
what they share.

Submodules:
    device: Device detection and selection
    timing: Section timers for Result.timing
    tolerances: Precision expectations per backend
"""

from pygreml.core.compute.device import (
    DeviceInfo,
    cpu_device,
    detect_gpu,
    select_device,
)
from pygreml.core.compute.timing import Timer
from pygreml.core.compute.tolerances import ToleranceTier, select_tolerance

__all__ = [
    "DeviceInfo",
    "cpu_device",
    "detect_gpu",
    "select_device",
    "Timer",
    "ToleranceTier",
    "select_tolerance",
]
