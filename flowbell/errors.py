"""
Failure taxonomy for the notification client.

  TransportError    stream connect/read failure, recovered by reconnecting
  ParseError        malformed inbound event payload, logged and dropped
  PersistenceError  local storage read/write failure, logged and swallowed
  OperationError    REST call failure, surfaced once retries are exhausted
"""


class FlowbellError(Exception):
    """Base class for every error raised by flowbell."""


class TransportError(FlowbellError):
    pass


class ParseError(FlowbellError):
    pass


class PersistenceError(FlowbellError):
    pass


class OperationError(FlowbellError):
    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status
