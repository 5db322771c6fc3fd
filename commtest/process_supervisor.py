import asyncio
import atexit
import collections
import contextlib
import logging
import os
import signal
import time
from typing import Deque, Dict, Iterable, List, Optional, Sequence

import psutil

from commtest.errors import HarnessError, NotReadyError, SpawnError
from commtest.log import success
from commtest.models import Role, RoleConfig

logger = logging.getLogger(__name__)

STREAM_LIMIT = 1024 * 1024
RECENT_LINES = 200


class ManagedProcess:
    """One spawned peer: its OS process plus the tasks draining its output"""

    def __init__(self, role_config: RoleConfig, process: asyncio.subprocess.Process):
        self.role_config = role_config
        self.process = process
        self.pid = process.pid
        self.started_at = time.time()
        self.recent_output: Deque[str] = collections.deque(maxlen=RECENT_LINES)
        self._subscribers: List[asyncio.Queue] = []
        self._tasks: List[asyncio.Task] = [
            asyncio.create_task(self._pump_stdout()),
            asyncio.create_task(self._pump_stderr()),
        ]

    @property
    def name(self) -> str:
        return self.role_config.role.value

    @property
    def alive(self) -> bool:
        return self.process.returncode is None

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode

    async def wait_exit(self) -> int:
        return await self.process.wait()

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def _publish(self, line: Optional[str]):
        for queue in self._subscribers:
            queue.put_nowait(line)

    async def _lines(self, stream: asyncio.StreamReader):
        while True:
            try:
                raw = await stream.readline()
            except ValueError:
                # readline already discarded the buffered part of the line
                logger.warning(f"{self.name.capitalize()} wrote a line over {STREAM_LIMIT} bytes, skipping it")
                continue
            if not raw:
                return
            yield raw.decode("utf-8", errors="replace").rstrip()

    async def _pump_stdout(self):
        # Keeps draining after readiness so the child never blocks on a full pipe
        try:
            async for line in self._lines(self.process.stdout):
                self.recent_output.append(line)
                logger.debug(f"[{self.name}] {line}")
                self._publish(line)
        finally:
            self._publish(None)

    async def _pump_stderr(self):
        async for line in self._lines(self.process.stderr):
            if "error" in line or "Error" in line:
                logger.error(f"{self.name.capitalize()} error: {line}")
            else:
                logger.debug(f"[{self.name}:stderr] {line}")

    def send_signal(self, sig: int) -> bool:
        """Signal the whole process group; False when nothing was there to signal"""
        if not self.alive:
            return False
        try:
            os.killpg(self.pid, sig)
        except ProcessLookupError:
            return False
        except PermissionError:
            # Some platforms refuse killpg on a group whose leader is a zombie
            try:
                self.process.send_signal(sig)
            except ProcessLookupError:
                return False
        return True

    async def stop_output(self):
        for task in self._tasks:
            if not task.done():
                task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"Output reader of {self.name} failed: {e}")


class ProcessSupervisor:
    """
    Owns every peer the scenario spawns.

    `terminate_all` is synchronous and idempotent so it can run from the
    driver, an atexit hook or a signal handler, in any order.
    """

    def __init__(self,
                 command: Sequence[str],
                 workdir: Optional[str] = None,
                 probe=None,
                 ports: Iterable[int] = (),
                 kill_port_owners: bool = True):
        if not command:
            raise ValueError("Peer command must not be empty")
        self.command = list(command)
        self.workdir = workdir
        self.probe = probe
        self.ports = sorted(set(ports))
        self.kill_port_owners_enabled = kill_port_owners
        self.processes: Dict[Role, ManagedProcess] = {}
        self._handlers_installed = False
        self._previous_handlers: Dict[int, object] = {}

    async def launch(self, role_config: RoleConfig) -> ManagedProcess:
        role = role_config.role
        current = self.processes.get(role)
        if current is not None and current.alive:
            raise HarnessError(f"{role.value} is already running (pid {current.pid})")

        argv = self.command + role_config.command_args()
        logger.info(f"Starting {role.value}: {' '.join(argv)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.workdir,
                start_new_session=True,
                limit=STREAM_LIMIT,
            )
        except (OSError, ValueError) as e:
            raise SpawnError(f"Failed to start {role.value}: {e}") from e

        managed = ManagedProcess(role_config, process)
        self.processes[role] = managed
        logger.debug(f"{role.value} spawned with pid {managed.pid}")
        return managed

    async def await_ready(self, managed: ManagedProcess, timeout: float, probe=None) -> bool:
        """
        Wait until `managed` is usable.

        Returns True when the probe fired and False when the timeout elapsed
        with the process still alive (assumed ready). Raises NotReadyError if
        the process exits first.
        """
        probe = probe or self.probe
        if probe is None:
            raise ValueError("No readiness probe configured")

        ready = asyncio.ensure_future(probe.wait(managed))
        exited = asyncio.ensure_future(managed.wait_exit())
        try:
            done, _ = await asyncio.wait({ready, exited}, timeout=timeout,
                                         return_when=asyncio.FIRST_COMPLETED)
        finally:
            pending = [task for task in (ready, exited) if not task.done()]
            for task in pending:
                task.cancel()
            for task in pending:
                with contextlib.suppress(asyncio.CancelledError, NotReadyError):
                    await task

        probe_error = ready.exception() if ready.done() and not ready.cancelled() else None

        # A dead process is never reported ready, even if it printed the signal first
        if not managed.alive:
            raise NotReadyError(f"{managed.name} exited with code {managed.returncode} before becoming ready")

        if ready in done:
            if probe_error is not None:
                raise probe_error
            success(logger, f"{managed.name.capitalize()} started successfully ({ready.result()})")
            return True

        logger.warning(f"No readiness signal from {managed.name} after {timeout:.1f}s, "
                       f"process is alive so assuming it is ready")
        return False

    def terminate_all(self):
        """Send SIGTERM to every tracked peer, then sweep the known ports"""
        if self.processes:
            logger.warning("Cleaning up processes...")
        for role in list(self.processes):
            managed = self.processes.pop(role)
            if managed.send_signal(signal.SIGTERM):
                logger.info(f"Sent SIGTERM to {role.value} (pid {managed.pid})")

        if self.kill_port_owners_enabled and self.ports:
            kill_port_owners(self.ports)

    async def close(self, timeout: float = 5.0):
        """terminate_all, then reap the children and stop their output pumps"""
        tracked = list(self.processes.values())
        self.terminate_all()
        for managed in tracked:
            try:
                await asyncio.wait_for(managed.wait_exit(), timeout)
            except asyncio.TimeoutError:
                logger.warning(f"{managed.name} ignored SIGTERM, killing it")
                managed.send_signal(signal.SIGKILL)
                await managed.wait_exit()
            await managed.stop_output()
        success(logger, "Cleanup completed")

    def install_cleanup_handlers(self):
        """Register terminate_all for interpreter exit and SIGINT/SIGTERM, once"""
        if self._handlers_installed:
            return
        atexit.register(self.terminate_all)
        for sig in (signal.SIGINT, signal.SIGTERM):
            self._previous_handlers[sig] = signal.signal(sig, self._handle_signal)
        self._handlers_installed = True

    def uninstall_cleanup_handlers(self):
        if not self._handlers_installed:
            return
        atexit.unregister(self.terminate_all)
        for sig, handler in self._previous_handlers.items():
            signal.signal(sig, handler)
        self._previous_handlers.clear()
        self._handlers_installed = False

    def _handle_signal(self, signum, frame):
        logger.warning(f"Received {signal.Signals(signum).name}, cleaning up")
        self.terminate_all()
        raise SystemExit(1)

    def __enter__(self):
        self.install_cleanup_handlers()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.terminate_all()
        self.uninstall_cleanup_handlers()
        return False


def kill_port_owners(ports: Iterable[int]) -> List[int]:
    """SIGKILL whatever still holds one of `ports`, except this process"""
    ports = set(ports)
    own_pid = os.getpid()
    try:
        connections = psutil.net_connections(kind="inet")
    except psutil.AccessDenied:
        logger.warning("Not allowed to list sockets, skipping port cleanup")
        return []

    pids = {
        conn.pid for conn in connections
        if conn.pid and conn.pid != own_pid and conn.laddr and conn.laddr.port in ports
    }
    killed = []
    for pid in sorted(pids):
        try:
            psutil.Process(pid).kill()
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            logger.debug(f"Could not kill pid {pid}: {e}")
            continue
        logger.info(f"Killed leftover pid {pid} on ports {sorted(ports)}")
        killed.append(pid)
    return killed
