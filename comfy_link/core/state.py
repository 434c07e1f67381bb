from enum import Enum


class ConnectionStatus(str, Enum):
    disconnected = "disconnected"
    connecting = "connecting"
    connected = "connected"


class StoppedReason(str, Enum):
    finished = "finished"
    interrupted = "interrupted"
    error = "error"
