"""
Clop optimiser

Optimises images and videos from the clipboard, dropped files and watched
folders, with cancellation, undo of removals and restore of originals.
"""

__version__ = "1.0.0"

from clop.jobs import JobManager, JobState, OptimisationOptions
from clop.optimisation import OptimisationEngine

__all__ = ["JobManager", "JobState", "OptimisationOptions", "OptimisationEngine"]
