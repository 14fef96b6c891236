"""Follow a log file by running ``tail -f`` in the background."""

from __future__ import annotations

import subprocess
from typing import IO, Any, Optional, Union

_Stream = Union[None, int, IO[Any]]


class LogTailer:
    """Tails the contents of a file to the given streams (inherited by default)."""

    def __init__(
        self, filename: str, stdout: _Stream = None, stderr: _Stream = None
    ) -> None:
        self.filename = filename
        self._stdout = stdout
        self._stderr = stderr
        self._process: Optional[subprocess.Popen] = None

    def start(self) -> None:
        """Start tailing the file from its first line; raises OSError on failure."""
        self._process = subprocess.Popen(
            ["tail", "-n", "+1", "-f", self.filename],
            stdout=self._stdout,
            stderr=self._stderr,
        )

    def stop(self) -> Optional[int]:
        """Kill the tail process and return its exit status, or None if not started."""
        if self._process is None:
            return None
        if self._process.poll() is None:
            self._process.kill()
        return self._process.wait()