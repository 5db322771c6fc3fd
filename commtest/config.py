import os
from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from commtest.models import Role, RoleConfig

# Reference identities of the checked-in .seller-env / .buyer-env files
DEFAULT_SELLER_PUBLIC_KEY = "0278b309d9b02ade112cdda215cd79da90916c940359cce783ae0b1779135f85ae"
DEFAULT_BUYER_PUBLIC_KEY = "02c7370bf416ee6e9f9a430a12869c456d93db6b7392a9f90d0db8981190f47153"


class Settings(BaseSettings):
    # Peer application
    PEER_COMMAND: List[str] = Field(default_factory=lambda: ["go", "run", "."], description="argv prefix of the peer binary")
    PEER_WORKDIR: str = Field(".", description="Working directory of spawned peers")
    HOST: str = Field("localhost", description="Host of the peers' WebSocket servers")

    # Seller
    SELLER_P2P_PORT: int = Field(1354, description="Seller network port")
    SELLER_WS_PORT: int = Field(3001, description="Seller WebSocket port")
    SELLER_ENV_FILE: str = Field(".seller-env", description="Seller environment file")
    SELLER_PUBLIC_KEY: str = Field(DEFAULT_SELLER_PUBLIC_KEY, description="Seller public key, empty to derive")

    # Buyer
    BUYER_P2P_PORT: int = Field(1355, description="Buyer network port")
    BUYER_WS_PORT: int = Field(3002, description="Buyer WebSocket port")
    BUYER_ENV_FILE: str = Field(".buyer-env", description="Buyer environment file")
    BUYER_PUBLIC_KEY: str = Field(DEFAULT_BUYER_PUBLIC_KEY, description="Buyer public key, empty to derive")
    SELLERS_SOURCE: str = Field("env", description="Where the buyer reads its seller list from")
    USE_LOCAL_ADDRESS: bool = Field(True, description="Pass --use-local-address to peers")

    # Scenario payloads
    TEST_MESSAGE: str = Field("Hello from seller to buyer - automated test message")
    RESPONSE_MESSAGE: str = Field("Hello from buyer to seller - automated response message")

    # Readiness
    READINESS_SIGNALS: List[str] = Field(default_factory=lambda: ["WebSocket server started", "listening"])
    READINESS_PROBE: str = Field("log", description="log or port")
    READY_TIMEOUT: float = Field(5.0, description="Seconds before assuming a live peer is ready")

    # Timing
    POST_READY_DELAY: float = Field(3.0, description="Wait after each role becomes ready")
    MESH_SETTLE_DELAY: float = Field(10.0, description="Wait for peer discovery between the roles")
    MESSAGE_SETTLE_DELAY: float = Field(3.0, description="Wait after each p2p message")
    CONNECT_TIMEOUT: float = Field(10.0, description="WebSocket open timeout")
    RESPONSE_TIMEOUT: float = Field(10.0, description="WebSocket reply timeout")
    EXIT_GRACE: float = Field(2.0, description="Delay before the harness exits")

    # Behaviour
    KILL_PORT_OWNERS: bool = Field(True, description="Force-kill leftover processes on the roles' ports")
    STRICT: bool = Field(False, description="Fail a step when the peer replies with type=error")

    # Logging Configuration
    LOG_LEVEL: str = Field("INFO", description="Logging level")
    LOG_FILE: str = Field("", description="Log file path, empty to disable")
    COLOR: bool = Field(True, description="Colorize console output")

    model_config = SettingsConfigDict(
        env_prefix="COMMTEST_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def get_log_level(self) -> str:
        """Get appropriate log level"""
        return self.LOG_LEVEL.upper()

    def role_config(self, role: Role) -> RoleConfig:
        if role == Role.SELLER:
            return RoleConfig(
                role=role,
                p2p_port=self.SELLER_P2P_PORT,
                ws_port=self.SELLER_WS_PORT,
                env_file=self.SELLER_ENV_FILE,
                public_key=self.SELLER_PUBLIC_KEY,
                host=self.HOST,
                use_local_address=self.USE_LOCAL_ADDRESS,
            )
        return RoleConfig(
            role=role,
            p2p_port=self.BUYER_P2P_PORT,
            ws_port=self.BUYER_WS_PORT,
            env_file=self.BUYER_ENV_FILE,
            public_key=self.BUYER_PUBLIC_KEY,
            host=self.HOST,
            use_local_address=self.USE_LOCAL_ADDRESS,
            sellers_source=self.SELLERS_SOURCE,
        )

    def env_file_path(self, role_config: RoleConfig) -> str:
        """Env file paths are relative to the peer's working directory"""
        return os.path.join(self.PEER_WORKDIR, role_config.env_file)

    def all_ports(self) -> List[int]:
        return [self.SELLER_P2P_PORT, self.SELLER_WS_PORT, self.BUYER_P2P_PORT, self.BUYER_WS_PORT]


# Global settings instance
settings = Settings()


# Example .env file content
ENV_EXAMPLE = """
# Peer binary
COMMTEST_PEER_COMMAND=["go", "run", "."]
COMMTEST_PEER_WORKDIR=..

# Ports
COMMTEST_SELLER_P2P_PORT=1354
COMMTEST_SELLER_WS_PORT=3001
COMMTEST_BUYER_P2P_PORT=1355
COMMTEST_BUYER_WS_PORT=3002

# Leave empty to derive from the env files' private_key
COMMTEST_SELLER_PUBLIC_KEY=
COMMTEST_BUYER_PUBLIC_KEY=

# Logging
COMMTEST_LOG_LEVEL=INFO
COMMTEST_LOG_FILE=commtest.log
"""

if __name__ == "__main__":
    print("Communication test configuration")
    print("=" * 40)
    print(f"Peer command: {' '.join(settings.PEER_COMMAND)} (in {settings.PEER_WORKDIR})")
    print(f"Seller: p2p {settings.SELLER_P2P_PORT}, ws {settings.SELLER_WS_PORT}")
    print(f"Buyer: p2p {settings.BUYER_P2P_PORT}, ws {settings.BUYER_WS_PORT}")
    print(f"Timeouts: ready {settings.READY_TIMEOUT}s, connect {settings.CONNECT_TIMEOUT}s, "
          f"response {settings.RESPONSE_TIMEOUT}s")
    print(f"Log Level: {settings.get_log_level()}")
    print("=" * 40)

    if not os.path.exists(".env"):
        print("\nCreate a .env file with:")
        print(ENV_EXAMPLE)
