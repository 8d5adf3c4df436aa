"""Multiscale point-to-plane / point-to-point ICP."""

from .config import IcpLevelConfig, MultiscaleIcpConfig
from .solver import AlignmentResult, LevelReport, LevelStatus, MultiscaleIcp, align_pyramids

__all__ = [
    "AlignmentResult",
    "IcpLevelConfig",
    "LevelReport",
    "LevelStatus",
    "MultiscaleIcp",
    "MultiscaleIcpConfig",
    "align_pyramids",
]
