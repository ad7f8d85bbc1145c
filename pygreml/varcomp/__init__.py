"""
Variance-component models: y ~ N(X beta, sum_i delta_i R_i), fit by REML or ML.

Public API:
    greml(): fit a model in one call
    GREMLDesign: validated data (y, X, relationship matrices)
    GREMLModel: model bound to a design; fit() and accessors
    GREMLSolution: result wrapper (summary, LRT)
    DenseRelationship,
    DiagonalRelationship: relationship-matrix representations
    IdentityTransform,
    CholeskyBlockTransform: theta -> delta parameter transforms
"""

from pygreml.varcomp._relationship import (
    DenseRelationship,
    DiagonalRelationship,
    RelationshipKind,
    as_relationship,
    relationship_dot,
)
from pygreml.varcomp._transforms import (
    CholeskyBlockTransform,
    IdentityTransform,
    ParameterTransform,
    get_transform,
)
from pygreml.varcomp.design import GREMLDesign
from pygreml.varcomp.model import GREMLModel
from pygreml.varcomp.solution import GREMLSolution
from pygreml.varcomp.solvers import greml

__all__ = [
    "greml",
    "GREMLDesign",
    "GREMLModel",
    "GREMLSolution",
    "DenseRelationship",
    "DiagonalRelationship",
    "RelationshipKind",
    "as_relationship",
    "relationship_dot",
    "ParameterTransform",
    "IdentityTransform",
    "CholeskyBlockTransform",
    "get_transform",
]
