"""
Buyer/seller communication scenario.

1. Start the seller, then the buyer, waiting for each to become ready
2. Give the two peers time to find each other
3. Ask both for their current peers over the commands channel
4. Send a p2p message seller -> buyer, then buyer -> seller
5. Ask both for their current peers again

The first failing step aborts the run. Peers are cleaned up on every path.
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, List, Optional, Tuple

from commtest.config import Settings
from commtest.errors import ErrorReplyError, HarnessError
from commtest.keys import resolve_public_key
from commtest.log import success
from commtest.models import (
    Channel,
    Response,
    Role,
    RoleConfig,
    StepResult,
    TestOutcome,
    WSMessage,
    p2p_message,
    show_current_peers,
)
from commtest.process_supervisor import ProcessSupervisor
from commtest.readiness import build_probe
from commtest.socket_session import SocketSession

logger = logging.getLogger(__name__)

BANNER = "=" * 50

Step = Tuple[str, Optional[Role], Callable[[], Awaitable[Optional[Response]]]]


def build_supervisor(settings: Settings) -> ProcessSupervisor:
    return ProcessSupervisor(
        command=settings.PEER_COMMAND,
        workdir=settings.PEER_WORKDIR,
        probe=build_probe(settings.READINESS_PROBE, settings.READINESS_SIGNALS),
        ports=settings.all_ports(),
        kill_port_owners=settings.KILL_PORT_OWNERS,
    )


class ScenarioDriver:
    def __init__(self, settings: Settings,
                 supervisor: Optional[ProcessSupervisor] = None,
                 derive_keys: bool = False,
                 sleep: Callable[[float], Awaitable] = asyncio.sleep):
        self.settings = settings
        self.supervisor = supervisor or build_supervisor(settings)
        self.derive_keys = derive_keys
        self.sleep = sleep
        self.seller = settings.role_config(Role.SELLER)
        self.buyer = settings.role_config(Role.BUYER)
        self.outcome = TestOutcome()

    def steps(self) -> List[Step]:
        s = self.settings
        return [
            ("start seller", Role.SELLER, lambda: self.start_role(self.seller)),
            ("start buyer", Role.BUYER, lambda: self.start_role(self.buyer)),
            ("wait for P2P connection", None,
             lambda: self.settle(s.MESH_SETTLE_DELAY, "Waiting for P2P connection to establish...")),
            ("seller status", Role.SELLER, lambda: self.check_status(self.seller)),
            ("buyer status", Role.BUYER, lambda: self.check_status(self.buyer)),
            ("p2p seller -> buyer", Role.SELLER,
             lambda: self.send_p2p(self.seller, self.buyer, s.TEST_MESSAGE)),
            ("message processing", None,
             lambda: self.settle(s.MESSAGE_SETTLE_DELAY, "Waiting for message processing...")),
            ("p2p buyer -> seller", Role.BUYER,
             lambda: self.send_p2p(self.buyer, self.seller, s.RESPONSE_MESSAGE)),
            ("message processing", None,
             lambda: self.settle(s.MESSAGE_SETTLE_DELAY, "Waiting for message processing...")),
            ("final seller status", Role.SELLER, lambda: self.check_status(self.seller)),
            ("final buyer status", Role.BUYER, lambda: self.check_status(self.buyer)),
        ]

    async def run(self) -> TestOutcome:
        logger.info("Starting comprehensive buyer-seller communication test")
        logger.info(BANNER)
        try:
            for name, role, action in self.steps():
                if not await self._run_step(name, role, action):
                    break
        finally:
            await self.supervisor.close()

        self.outcome.finalize()
        self._report()
        return self.outcome

    async def _run_step(self, name: str, role: Optional[Role], action) -> bool:
        started = time.monotonic()
        result = StepResult(name=name, role=role)
        try:
            result.response = await action()
        except HarnessError as e:
            result.passed = False
            result.error = e
            where = f" ({role.value})" if role else ""
            logger.error(f"Test failed at step '{name}'{where}: {e}")
        except Exception as e:
            result.passed = False
            result.error = e
            logger.exception(f"Unexpected error at step '{name}': {e}")
        result.duration = time.monotonic() - started
        self.outcome.record(result)
        return result.passed

    async def start_role(self, role_config: RoleConfig) -> None:
        managed = await self.supervisor.launch(role_config)
        await self.supervisor.await_ready(managed, timeout=self.settings.READY_TIMEOUT)
        success(logger, f"{role_config.role.value.capitalize()} process started")
        await self.sleep(self.settings.POST_READY_DELAY)

    async def settle(self, delay: float, reason: str) -> None:
        logger.warning(reason)
        await self.sleep(delay)

    async def check_status(self, role_config: RoleConfig) -> Response:
        logger.info(f"Testing {role_config.role.value} status...")
        return await self.exchange(role_config, Channel.COMMANDS, show_current_peers(),
                                   f"{role_config.role.value} status check")

    async def send_p2p(self, sender: RoleConfig, recipient: RoleConfig, text: str) -> Response:
        logger.info(f"Testing P2P message from {sender.role.value} to {recipient.role.value}...")
        env_file = self.settings.env_file_path(recipient)
        public_key = resolve_public_key(recipient, env_file, derive=self.derive_keys)
        return await self.exchange(sender, Channel.P2P, p2p_message(text, public_key),
                                   f"P2P message from {sender.role.value} to {recipient.role.value}")

    async def exchange(self, role_config: RoleConfig, channel: Channel,
                       message: WSMessage, description: str) -> Response:
        """Open a session for one request, return its reply, close the session"""
        session = await SocketSession.open(
            role_config.endpoint(channel),
            connect_timeout=self.settings.CONNECT_TIMEOUT,
            response_timeout=self.settings.RESPONSE_TIMEOUT,
        )
        try:
            response = await session.request(message, description=description)
        finally:
            await session.close()

        if response.is_error:
            detail = f"{response.message.error or 'error'}: {response.message.data}"
            if self.settings.STRICT:
                raise ErrorReplyError(f"{description} answered with {detail}")
            logger.warning(f"{description} answered with {detail}")
        return response

    def _report(self):
        if self.outcome.passed:
            logger.info(BANNER)
            success(logger, "All tests completed successfully!")
            success(logger, "✓ Seller started and ready")
            success(logger, "✓ Buyer started and ready")
            success(logger, "✓ P2P messages sent successfully")
            success(logger, "✓ Status checks completed for both nodes")
            logger.info(BANNER)
        else:
            failed = self.outcome.failed_step
            logger.error(BANNER)
            logger.error(f"Test FAILED at step '{failed.name}': {failed.error}")
            logger.error(f"{len(self.outcome.steps) - 1} step(s) passed before the failure")
            logger.error(BANNER)
