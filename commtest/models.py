import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError


def now_millis() -> int:
    return int(time.time() * 1000)


class Role(str, Enum):
    SELLER = "seller"
    BUYER = "buyer"


class Channel(str, Enum):
    COMMANDS = "commands"
    P2P = "p2p"


class MessageType(str, Enum):
    # Requests
    SHOW_CURRENT_PEERS = "showCurrentPeers"
    REPLACE_SELLERS = "replaceSellers"
    P2P = "p2p"
    # Replies
    CURRENT_PEERS = "currentPeers"
    SUCCESS = "success"
    ERROR = "error"


class SessionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    FAILED = "failed"


class WSMessage(BaseModel):
    """JSON envelope exchanged with the peer's WebSocket endpoints"""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    type: str
    data: Any = ""
    timestamp: int = Field(default_factory=now_millis)
    public_key: Optional[str] = Field(None, alias="publicKey")
    error: Optional[str] = None

    def to_wire(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


def show_current_peers() -> WSMessage:
    return WSMessage(type=MessageType.SHOW_CURRENT_PEERS.value, data="")


def p2p_message(text: str, public_key: str) -> WSMessage:
    return WSMessage(type=MessageType.P2P.value, data=text, public_key=public_key)


def replace_sellers(public_keys: List[str]) -> WSMessage:
    # The peer expects the seller list as a JSON string inside `data`
    payload = json.dumps({"sellerPublicKeys": list(public_keys)})
    return WSMessage(type=MessageType.REPLACE_SELLERS.value, data=payload)


@dataclass
class Response:
    """First message received after a request, raw and (when possible) decoded"""

    raw: str
    message: Optional[WSMessage] = None

    @classmethod
    def from_raw(cls, raw) -> "Response":
        if isinstance(raw, (bytes, bytearray)):
            raw = bytes(raw).decode("utf-8", errors="replace")
        try:
            decoded = json.loads(raw)
        except ValueError:
            return cls(raw=raw)
        if not isinstance(decoded, dict):
            return cls(raw=raw)
        try:
            return cls(raw=raw, message=WSMessage.model_validate(decoded))
        except ValidationError:
            return cls(raw=raw)

    @property
    def is_error(self) -> bool:
        return self.message is not None and self.message.type == MessageType.ERROR.value


class RoleConfig(BaseModel):
    """Everything needed to launch one role and reach its endpoints"""

    role: Role
    p2p_port: int
    ws_port: int
    env_file: str
    public_key: str = ""
    host: str = "localhost"
    use_local_address: bool = True
    sellers_source: str = "env"

    def command_args(self) -> List[str]:
        args = [
            f"--port={self.p2p_port}",
            "--mode=peer",
            f"--buyer-or-seller={self.role.value}",
        ]
        if self.role == Role.BUYER:
            args.append(f"--list-of-sellers-source={self.sellers_source}")
        args.append(f"--envFile={self.env_file}")
        if self.use_local_address:
            args.append("--use-local-address")
        args.append(f"--ws-port={self.ws_port}")
        return args

    def endpoint(self, channel: Channel) -> str:
        return f"ws://{self.host}:{self.ws_port}/{self.role.value}/{channel.value}"

    @property
    def ports(self) -> List[int]:
        return [self.p2p_port, self.ws_port]


@dataclass
class StepResult:
    name: str
    role: Optional[Role] = None
    passed: bool = True
    response: Optional[Response] = None
    error: Optional[BaseException] = None
    duration: float = 0.0


@dataclass
class TestOutcome:
    """Aggregate pass/fail state of one scenario run"""

    __test__ = False

    steps: List[StepResult] = field(default_factory=list)
    finalized: bool = False
    passed: Optional[bool] = None

    def record(self, result: StepResult):
        if self.finalized:
            raise RuntimeError("Outcome already finalized")
        self.steps.append(result)

    def finalize(self) -> "TestOutcome":
        if not self.finalized:
            self.passed = all(step.passed for step in self.steps)
            self.finalized = True
        return self

    @property
    def failed_step(self) -> Optional[StepResult]:
        return next((step for step in self.steps if not step.passed), None)

    @property
    def exit_code(self) -> int:
        return 0 if self.passed else 1
