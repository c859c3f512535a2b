from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from evvl.errors import SubprocessUnavailable

logger = logging.getLogger(__name__)


class GitContextDetector:
    """Names the current project after the enclosing git working tree."""

    def __init__(self, timeout: float = 2.0, cwd: Path | None = None, git: str = "git") -> None:
        self.timeout = timeout
        self.cwd = cwd
        self.git = git

    def detect(self) -> str | None:
        try:
            root = self._toplevel()
        except SubprocessUnavailable as exc:
            logger.debug("No git context: %s", exc)
            return None
        name = Path(root).name
        return name or None

    def _toplevel(self) -> str:
        try:
            proc = subprocess.run(
                [self.git, "rev-parse", "--show-toplevel"],
                cwd=self.cwd,
                capture_output=True,
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            raise SubprocessUnavailable(str(exc)) from exc
        if proc.returncode != 0:
            raise SubprocessUnavailable(f"git exited with status {proc.returncode}")
        try:
            root = proc.stdout.decode("utf-8").strip()
        except UnicodeDecodeError as exc:
            raise SubprocessUnavailable("git output is not valid UTF-8") from exc
        if not root:
            raise SubprocessUnavailable("git printed no toplevel directory")
        return root
