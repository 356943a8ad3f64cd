"""
Discovery of the external codec binaries used by the optimisers.
"""

import os
import shutil
import sys
import threading
from pathlib import Path
from typing import Dict, Iterable, Optional

from clop.jobs.errors import ToolInvocationError
from clop.utils.logging_config import get_logger

logger = get_logger(__name__)

KNOWN_TOOLS = ("ffmpeg", "gifsicle")


class BinaryManager:
    """
    Locates codec binaries in a configured directory, then on PATH.

    Discovery runs once, lazily, and can be repeated with ``prepare()``
    after tools are installed. ``preparing`` is True while it runs.

    Example:
        >>> binaries = BinaryManager(bin_dir=Path("/opt/clop/bin"))
        >>> binaries.find("ffmpeg")
        PosixPath('/opt/clop/bin/ffmpeg')
    """

    def __init__(self, bin_dir: Optional[Path] = None, tools: Iterable[str] = KNOWN_TOOLS):
        self.bin_dir = Path(bin_dir) if bin_dir else None
        self.tools = tuple(tools)
        self.preparing = False
        self._paths: Dict[str, Optional[Path]] = {}
        self._prepared = False
        self._lock = threading.Lock()

    def prepare(self) -> Dict[str, Optional[Path]]:
        """
        (Re)discover every known tool.

        Returns:
            Mapping of tool name to its path, or None when missing.
        """
        with self._lock:
            self.preparing = True
            try:
                self._paths = {tool: self._locate(tool) for tool in self.tools}
                self._prepared = True
            finally:
                self.preparing = False

        missing = [tool for tool, path in self._paths.items() if path is None]
        if missing:
            logger.warning(f"Codec tools not found: {', '.join(missing)}")
        else:
            logger.info("All codec tools available")
        return dict(self._paths)

    def _locate(self, name: str) -> Optional[Path]:
        if self.bin_dir is not None:
            names = [name, f"{name}.exe"] if sys.platform == "win32" else [name]
            for candidate_name in names:
                candidate = self.bin_dir / candidate_name
                if candidate.is_file() and os.access(candidate, os.X_OK):
                    return candidate

        found = shutil.which(name)
        return Path(found) if found else None

    def available(self) -> Dict[str, Optional[Path]]:
        """Mapping of tool name to path (None when missing)."""
        if not self._prepared:
            self.prepare()
        return dict(self._paths)

    def has(self, name: str) -> bool:
        return self.available().get(name) is not None

    def find(self, name: str) -> Path:
        """
        Get the path of a tool.

        Raises:
            ToolInvocationError: If the tool is unknown or not installed.
        """
        path = self.available().get(name)
        if path is None:
            where = f"{self.bin_dir} or PATH" if self.bin_dir else "PATH"
            raise ToolInvocationError(f"{name} not found in {where}", tool=name)
        return path
