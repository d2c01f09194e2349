"""
Error taxonomy for the CDR AMQP backend.

Build-time errors (ConfigError, ConnectionUnavailable) only ever come out of
initial load or reload. Per-call errors (ConfigUnavailable, NoConnection,
EncodingError, PublishFailed) fail a single CDR and nothing else.
"""


class CdrAmqpError(Exception):
    """Base class for every error raised by the backend."""


class ConfigError(CdrAmqpError):
    """Configuration file is missing, unparsable, or holds invalid options."""


class ConfigUnavailable(CdrAmqpError):
    """No configuration snapshot is installed (before load or after shutdown)."""


class ConnectionUnavailable(CdrAmqpError):
    """The named AMQP connection could not be obtained while building a snapshot."""

    def __init__(self, connection_name: str) -> None:
        super().__init__(f"Could not get AMQP connection '{connection_name}'")
        self.connection_name = connection_name


class NoConnection(CdrAmqpError):
    """The installed snapshot has no broker handle."""


class EncodingError(CdrAmqpError):
    """A call record could not be rendered to a JSON document."""


class PublishFailed(CdrAmqpError):
    """The broker rejected the publish or it could not be completed."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause
