"""
Likelihood evaluator backends.

The CPU evaluator (LikelihoodEvaluator in pygreml.varcomp._likelihood) is
the reference. The GPU evaluator is imported lazily because PyTorch is an
optional dependency.
"""

from typing import Literal

from pygreml.core.compute.device import select_device
from pygreml.varcomp._likelihood import LikelihoodEvaluator
from pygreml.varcomp.design import GREMLDesign

BackendChoice = Literal['auto', 'cpu', 'gpu']


def get_evaluator(choice: BackendChoice, design: GREMLDesign, *, reml: bool = True):
    """
    Select and instantiate the likelihood evaluator.

    Args:
        choice: 'cpu', 'gpu' or 'auto'. 'auto' uses a CUDA device when one
            is available and the CPU otherwise; MPS is only used when
            asked for with 'gpu', since FP32 is too coarse for log|V| at
            the sizes where a GPU pays off.
        design: The validated design.
        reml: Restricted (True) or full (False) likelihood.

    Raises:
        ValueError: If unknown backend specified.
        RuntimeError: If 'gpu' requested but unavailable.
    """
    if choice == 'auto':
        device = select_device('auto')
        if device.device_type == 'cuda':
            from pygreml.varcomp.backends.gpu import GPULikelihoodEvaluator
            return GPULikelihoodEvaluator(design, reml=reml, device='cuda')
        return LikelihoodEvaluator(design, reml=reml)

    elif choice in ('cpu', 'cpu_cholesky'):
        return LikelihoodEvaluator(design, reml=reml)

    elif choice in ('gpu', 'gpu_cholesky'):
        from pygreml.varcomp.backends.gpu import GPULikelihoodEvaluator
        device = select_device('gpu')
        if device.device_type == 'mps':
            return GPULikelihoodEvaluator(design, reml=reml, device='mps', use_fp64=False)
        return GPULikelihoodEvaluator(design, reml=reml, device='cuda')

    else:
        raise ValueError(f"Unknown backend: {choice!r}")


__all__ = ['BackendChoice', 'LikelihoodEvaluator', 'get_evaluator']
