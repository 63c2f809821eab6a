"""Domain package."""

from .results import ErrorCode, OperationResult
from .controls import CONTROLS, ControlDescriptor, ControlKind
from .stream_config import OverlayConfig, StreamConfig

__all__ = [
    'ErrorCode',
    'OperationResult',
    'CONTROLS',
    'ControlDescriptor',
    'ControlKind',
    'OverlayConfig',
    'StreamConfig',
]
