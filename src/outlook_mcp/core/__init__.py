"""Core infrastructure: process bridge, parameter encoding, logging, telemetry."""

from outlook_mcp.core.bridge import (
    BridgeFailed,
    BridgeOk,
    BridgeResult,
    OperationRequest,
    ProcessBridge,
)
from outlook_mcp.core.params import LIST_DELIMITER, encode_parameters, join_list

__all__ = [
    "LIST_DELIMITER",
    "BridgeFailed",
    "BridgeOk",
    "BridgeResult",
    "OperationRequest",
    "ProcessBridge",
    "encode_parameters",
    "join_list",
]
