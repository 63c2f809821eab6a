"""Operation results shared by the control, stream and preview services.

Services never raise past their own boundary: every operation returns an
OperationResult that the transport layer can serialize as-is.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Failure taxonomy."""
    UNKNOWN_CONTROL = "UnknownControl"
    OUT_OF_RANGE = "OutOfRange"
    UNSUPPORTED_PROTOCOL = "UnsupportedProtocol"
    UNSUPPORTED_ENCODER = "UnsupportedEncoder"
    MISSING_DESTINATION = "MissingDestination"
    ALREADY_RUNNING = "AlreadyRunning"
    NOT_RUNNING = "NotRunning"
    EXTERNAL_PROCESS_FAILURE = "ExternalProcessFailure"
    PERSIST_FAILURE = "PersistFailure"
    DEVICE_BUSY = "DeviceBusy"


@dataclass
class OperationResult:
    """Outcome of a service operation: {success, ...}."""
    success: bool
    code: Optional[ErrorCode] = None
    error: Optional[str] = None
    message: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: Optional[str] = None, **data: Any) -> "OperationResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, code: ErrorCode, error: str, **data: Any) -> "OperationResult":
        return cls(success=False, code=code, error=error, data=data)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success}
        result.update(self.data)
        if self.message is not None:
            result["message"] = self.message
        if not self.success:
            result["error"] = self.error
            result["code"] = self.code.value if self.code else None
        return result
