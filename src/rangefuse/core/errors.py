"""Exception hierarchy for invalid or degenerate inputs.

Non-convergence and numerical singularity are not exceptions: they are reported
through ``AlignmentResult.converged`` and ``LevelReport.status``.
"""

from __future__ import annotations


class RangeFuseError(Exception):
    """Base class for errors raised by rangefuse."""


class DegenerateInputError(RangeFuseError, ValueError):
    """An empty point set was passed where at least one point is required."""


class ContractViolationError(RangeFuseError, ValueError):
    """Structurally invalid input (wrong shapes, missing required attributes)."""


class PyramidMismatchError(ContractViolationError):
    """Source and target pyramids have a different number of levels."""
