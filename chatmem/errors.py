"""Error taxonomy shared by the memory engine, the Gemini clients and sessions."""


class ChatError(Exception):
    """Base class for every failure a session reports back to the client."""


class ProtocolError(ChatError):
    """An inbound frame could not be parsed or names an unknown command."""


class UpstreamError(ChatError):
    """A completion or embedding request failed (transport, status or decode)."""


class StorageError(ChatError):
    """The message store failed while running an operation."""


class ConfigurationError(ChatError):
    """A required external credential is missing."""
