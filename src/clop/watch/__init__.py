"""Automatic optimisation of files appearing in watched folders."""

from .dir_watcher import DirWatcher

__all__ = ["DirWatcher"]
