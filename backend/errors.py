"""
Error types for ISC DHCP Sync Manager
Each error subclasses the closest builtin so existing handlers keep working
"""

from typing import Optional


class DhcpManagerError(Exception):
    """Base class for all manager errors"""


class UnsupportedPlatform(DhcpManagerError, RuntimeError):
    """Raised when a system operation is attempted on a non-Unix host"""

    def __init__(self, message: str = "System is not a Unix environment"):
        super().__init__(message)


class RequiredFileMissing(DhcpManagerError, FileNotFoundError):
    """Raised when an expected system file does not exist"""

    def __init__(self, path: str):
        super().__init__(f"{path} not found")
        self.filename = path


class MalformedDirective(DhcpManagerError, ValueError):
    """Raised when a configuration line cannot be applied"""

    def __init__(self, line: str, line_number: Optional[int] = None, reason: str = "unexpected directive"):
        location = f"line {line_number}" if line_number is not None else "line"
        super().__init__(f"{reason} at {location}: {line!r}")
        self.line = line
        self.line_number = line_number


class LeaseFileUnreadable(DhcpManagerError, IOError):
    """Raised when the leases file cannot be read or parsed"""

    def __init__(self, path: str, cause: Optional[BaseException] = None):
        message = f"Unable to read leases file {path}"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)
        self.filename = path


class UnknownServiceStatus(DhcpManagerError):
    """Raised when service status output matches no known state"""

    def __init__(self, output: str):
        super().__init__(f"unknown status {output.strip()!r}")
        self.output = output


class CommandTimedOut(DhcpManagerError, TimeoutError):
    """Raised when an external command exceeds its timeout"""

    def __init__(self, command: str, timeout: float):
        super().__init__(f"Command timed out after {timeout}s: {command}")
        self.command = command
        self.timeout = timeout


class ServiceStateError(DhcpManagerError):
    """Raised when a lifecycle transition is not valid from the current state"""

    def __init__(self, operation: str, state):
        super().__init__(f"Cannot {operation} while service is {state}")
        self.operation = operation
        self.state = state
