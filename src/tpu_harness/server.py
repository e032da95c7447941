"""
Accelerator Server Process

Spawns the accelerator serving process (``xrt_server`` by default) in the
background without waiting for it to become ready, and terminates it on
teardown.
"""

import logging
import os
import subprocess
from typing import Dict, List, Optional

from .exceptions import ServerLaunchError

logger = logging.getLogger(__name__)


class ServerProcess:
    """
    Handle to a background server process.

    Example:
        server = ServerProcess(["xrt_server"])
        server.start()
        try:
            ...
        finally:
            server.kill()
    """

    def __init__(self, command: List[str], env: Optional[Dict[str, str]] = None,
                 kill_timeout: float = 10.0):
        self.command = list(command)
        self.env = dict(env or {})
        self.kill_timeout = kill_timeout
        self._process: Optional[subprocess.Popen] = None

    def start(self) -> "ServerProcess":
        """
        Launch the server without waiting for it.

        Raises:
            ServerLaunchError: If the executable cannot be launched
        """
        if self._process is not None:
            raise ServerLaunchError(self.command, f"already started (pid {self._process.pid})")

        env = os.environ.copy()
        env.update(self.env)

        try:
            self._process = subprocess.Popen(
                self.command,
                env=env,
                stdin=subprocess.DEVNULL,
            )
        except OSError as e:
            raise ServerLaunchError(self.command, str(e)) from e

        logger.info("Started server %s (pid %d)", " ".join(self.command), self._process.pid)
        return self

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    @property
    def returncode(self) -> Optional[int]:
        if self._process is None:
            return None
        return self._process.poll()

    @property
    def started(self) -> bool:
        return self._process is not None

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def kill(self) -> None:
        """Kill and reap the process. Safe to call more than once."""
        if self._process is None or self._process.poll() is not None:
            return

        self._process.kill()
        try:
            self._process.wait(timeout=self.kill_timeout)
        except subprocess.TimeoutExpired:
            logger.warning("Server pid %d did not exit within %.1fs of SIGKILL",
                           self._process.pid, self.kill_timeout)
            return
        logger.info("Killed server pid %d", self._process.pid)

    def __enter__(self) -> "ServerProcess":
        return self.start()

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.kill()

    def __repr__(self) -> str:
        if self._process is None:
            state = "not started"
        elif self.is_running:
            state = f"running pid={self._process.pid}"
        else:
            state = f"exited code={self._process.returncode}"
        return f"ServerProcess({' '.join(self.command)}, {state})"
