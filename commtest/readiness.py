"""
Readiness probes for spawned peers.

A probe answers one question: has this process become usable? `wait()` returns
once it has, and never returns otherwise. Bounding the wait and deciding what
a timeout means is the supervisor's job, so probes can be swapped without
touching the scenario.
"""
import asyncio
import contextlib
from typing import Iterable, Optional

from commtest.errors import NotReadyError


class LogReadinessProbe:
    """Ready once a stdout line contains any of the configured substrings"""

    name = "log"

    def __init__(self, signals: Iterable[str]):
        self.signals = tuple(signals)
        if not self.signals:
            raise ValueError("At least one readiness signal is required")

    def matches(self, line: str) -> Optional[str]:
        for signal in self.signals:
            if signal in line:
                return signal
        return None

    async def wait(self, managed) -> str:
        queue = managed.subscribe()
        try:
            # Lines printed before we subscribed
            for line in list(managed.recent_output):
                if self.matches(line):
                    return line
            while True:
                line = await queue.get()
                if line is None:
                    await managed.wait_exit()
                    raise NotReadyError(f"{managed.name} closed its output before signalling readiness")
                if self.matches(line):
                    return line
        finally:
            managed.unsubscribe(queue)


class PortReadinessProbe:
    """Ready once the role's WebSocket port accepts TCP connections"""

    name = "port"

    def __init__(self, interval: float = 0.1):
        self.interval = interval

    async def wait(self, managed) -> str:
        host = managed.role_config.host
        port = managed.role_config.ws_port
        while True:
            try:
                _, writer = await asyncio.open_connection(host, port)
            except OSError:
                await asyncio.sleep(self.interval)
                continue
            writer.close()
            with contextlib.suppress(OSError):
                await writer.wait_closed()
            return f"{host}:{port} accepting connections"


def build_probe(kind: str, signals: Iterable[str]):
    if kind == LogReadinessProbe.name:
        return LogReadinessProbe(signals)
    if kind == PortReadinessProbe.name:
        return PortReadinessProbe()
    raise ValueError(f"Unknown readiness probe: {kind}")
