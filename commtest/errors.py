class HarnessError(Exception):
    """Base class for every failure that aborts a scenario run"""


class SpawnError(HarnessError):
    """The peer binary could not be started"""


class NotReadyError(HarnessError):
    """The peer exited or errored before signalling readiness"""


class ConnectError(HarnessError):
    """The WebSocket connection could not be established"""


class ConnectTimeoutError(ConnectError):
    """The WebSocket connection did not open within the bound"""


class ResponseTimeoutError(HarnessError):
    """No reply arrived within the bound"""


class TransportError(HarnessError):
    """The connection broke while sending or receiving"""


class SessionStateError(HarnessError):
    """Request issued on a session that is not open or already has one in flight"""


class ErrorReplyError(HarnessError):
    """The peer answered with an error message (strict mode)"""


class KeyMaterialError(HarnessError):
    """A role's private key is missing or unusable"""
