from .kdtree import KdTree

__all__ = ["KdTree"]
