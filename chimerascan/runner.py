import logging
import shlex
import subprocess
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Union

from .errors import ProcessError

log = logging.getLogger(__name__)

# JSON lines, quiet, no OOB interaction server, 50 req/s, 90s per request
SCANNER_FLAGS = ("-j", "-silent", "-no-interactsh", "-rate-limit", "50", "-timeout", "90")


@dataclass
class ScanOutput:
    stdout: bytes
    stderr: bytes = b""
    returncode: int = 0


class ProcessRegistry:
    """Live scanner processes keyed by scan id.

    A scan has at most one registered process. All access goes through the
    lock so a cancel can never miss a process that is being registered.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._procs: Dict[str, subprocess.Popen] = {}

    def register(self, scan_id: str, proc: subprocess.Popen) -> None:
        with self._lock:
            if scan_id in self._procs:
                raise ProcessError(f"scan {scan_id} already has a running scanner")
            self._procs[scan_id] = proc

    def unregister(self, scan_id: str, proc: Optional[subprocess.Popen] = None) -> None:
        with self._lock:
            current = self._procs.get(scan_id)
            if current is not None and (proc is None or current is proc):
                del self._procs[scan_id]

    def kill(self, scan_id: str) -> bool:
        """Kill and forget the scan's process. Returns False if none was running."""
        with self._lock:
            proc = self._procs.pop(scan_id, None)
        if proc is None:
            return False
        try:
            proc.kill()
        except OSError as e:
            log.warning("Failed to kill scanner for scan %s: %s", scan_id, e)
        return True

    def __contains__(self, scan_id: str) -> bool:
        with self._lock:
            return scan_id in self._procs

    def __len__(self) -> int:
        with self._lock:
            return len(self._procs)


class ScannerRunner:
    """Runs the external scanner against one target and collects its stdout."""

    def __init__(self, command: Union[str, Sequence[str]], registry: Optional[ProcessRegistry] = None):
        self.command: List[str] = shlex.split(command) if isinstance(command, str) else list(command)
        if not self.command:
            raise ValueError("scanner command is empty")
        self.registry = registry if registry is not None else ProcessRegistry()

    def build_command(self, target_url: str) -> List[str]:
        return [*self.command, "-u", target_url, *SCANNER_FLAGS]

    def run(self, scan_id: str, target_url: str, cancel_event: Optional[threading.Event] = None) -> ScanOutput:
        cmd = self.build_command(target_url)
        log.info("Starting scanner for %s (scan %s)", target_url, scan_id)
        try:
            proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except OSError as e:
            raise ProcessError(f"failed to start scanner: {e}") from e

        try:
            self.registry.register(scan_id, proc)
        except ProcessError:
            proc.kill()
            proc.wait()
            raise

        try:
            # a cancel that landed before registration found nothing to kill
            if cancel_event is not None and cancel_event.is_set():
                self.registry.kill(scan_id)
            try:
                out, err = proc.communicate()
            except (OSError, ValueError) as e:
                proc.kill()
                proc.wait()
                raise ProcessError(f"failed to read scanner output: {e}") from e
        finally:
            self.registry.unregister(scan_id, proc)

        if proc.returncode != 0:
            log.warning("Scanner exited with code %d for scan %s", proc.returncode, scan_id)
            if err:
                log.debug("Scanner stderr: %s", err.decode("utf-8", errors="replace")[-2000:])
        return ScanOutput(stdout=out or b"", stderr=err or b"", returncode=proc.returncode)
