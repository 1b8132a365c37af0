"""
External collaborator contracts for trendforge.
"""

from .collaborators import PipelineCollaborators, load_factory

__all__ = [
    "PipelineCollaborators",
    "load_factory",
]
