"""Exception hierarchy shared by the advisor packages."""


class AdvisorError(Exception):
    """Base class for every error raised by the advisor."""


class InvalidPosition(AdvisorError, ValueError):
    """A FEN or move list could not be turned into a legal position."""


class EngineError(AdvisorError):
    """The external analysis engine misbehaved."""


class EngineUnavailable(EngineError):
    """The engine process could not be started or has exited."""


class EngineTimeout(EngineError):
    """A waited-for protocol line never arrived."""


class EngineClosed(EngineError):
    """The session was used after teardown."""


class EngineProtocolError(EngineError):
    """The engine sent a move that is malformed or illegal in the searched position."""
