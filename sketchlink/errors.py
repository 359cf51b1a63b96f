"""Domain-specific errors for sketchlink."""


class SketchlinkError(Exception):
    """Base error for sketchlink."""


class ToolchainError(SketchlinkError):
    """Base toolchain error."""


class ProcessSpawnError(ToolchainError):
    """Raised when the toolchain binary is missing or cannot be executed.

    Compile and upload carry this as a SpawnFailure result instead.
    """


class ToolchainFailure(ToolchainError):
    """Raised when the toolchain exits with a non-zero status."""

    def __init__(self, message: str, exit_code: int):
        super().__init__(message)
        self.exit_code = exit_code


class MalformedResponse(ToolchainError):
    """Raised when toolchain output is not the expected structured format."""


class ChannelError(SketchlinkError):
    """Structured serial channel error with exit code."""

    exit_code = 1

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        self.message = message
        if exit_code is not None:
            self.exit_code = exit_code

    def to_dict(self) -> dict:
        return {"error": self.message, "exit_code": self.exit_code}


class PortIOError(ChannelError):
    """Raised when opening, writing to or closing the port fails."""

    exit_code = 2


class PortBusyError(PortIOError):
    """Raised when the port is held by another process."""

    exit_code = 3


class PortPermissionError(PortIOError):
    """Raised when the OS denies access to the port."""

    exit_code = 4


class ConnectionTimeout(ChannelError):
    """Raised when the port does not open within the connect timeout."""

    exit_code = 5


class NotConnectedError(ChannelError):
    """Raised when an operation needs a live connection and there is none."""

    exit_code = 6
