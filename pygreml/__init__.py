"""
pygreml: genomic-relationship REML for Python.

Fits linear variance-component models y ~ N(X beta, V) with
V = sum_i delta_i R_i over known relationship matrices R_i, with optional
GPU acceleration.

Submodules:
    varcomp: Variance-component models (GREML)
    core: Exceptions, Result envelope, validation, compute utilities
"""

__version__ = "0.1.0"

from pygreml import varcomp
from pygreml.varcomp import (
    GREMLDesign,
    GREMLModel,
    GREMLSolution,
    greml,
)

__all__ = [
    "__version__",
    "varcomp",
    "greml",
    "GREMLDesign",
    "GREMLModel",
    "GREMLSolution",
]
