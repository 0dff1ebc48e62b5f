from .channel import JsonLineChannel, channel_from_fds
from .messages import OPERATIONS, BridgeErrorPayload, BridgeMessage, normalize_error
from .process_bridge import EngineProcess, ProcessBridge, spawn_engine
from .runtime_proxy import BridgedRuntime

__all__ = [
    "OPERATIONS",
    "BridgeErrorPayload",
    "BridgeMessage",
    "BridgedRuntime",
    "EngineProcess",
    "JsonLineChannel",
    "ProcessBridge",
    "channel_from_fds",
    "normalize_error",
    "spawn_engine",
]
