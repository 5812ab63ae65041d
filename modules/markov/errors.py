"""Exception types shared by the Markov engine, its worker and the bridge."""

from typing import Optional


class MarkovError(Exception):
    """Base class for every engine failure."""

    kind = "internal"


class TransportError(MarkovError):
    """Upstream fetch or store failure. Retrying later may help."""

    kind = "transport"


class EmptyCorpusError(MarkovError):
    """A filtered corpus query returned no records."""

    kind = "empty_corpus"

    def __init__(self, message: str = "No messages found with the given filters"):
        super().__init__(message)


class ModelEmptyError(MarkovError):
    """Generation was requested from a chain with no transitions."""

    kind = "model_empty"

    def __init__(self, message: str = "No data to generate from"):
        super().__init__(message)


class ProtocolError(MarkovError):
    """Malformed or uncorrelated bridge message."""

    kind = "protocol"


class EngineUnavailableError(MarkovError):
    """The worker crashed, was shut down, or was never initialized."""

    kind = "unavailable"


class EngineError(MarkovError):
    """Unexpected failure inside the worker."""

    kind = "internal"


_ERRORS_BY_KIND = {
    TransportError.kind: TransportError,
    EmptyCorpusError.kind: EmptyCorpusError,
    ModelEmptyError.kind: ModelEmptyError,
    EngineUnavailableError.kind: EngineUnavailableError,
    EngineError.kind: EngineError,
}


def error_kind(exc: BaseException) -> str:
    """Wire name for an exception raised inside the worker."""
    if isinstance(exc, MarkovError):
        return exc.kind
    return EngineError.kind


def error_from_payload(kind: Optional[str], message: str) -> MarkovError:
    """Rebuild a typed exception from an error reply."""
    error_cls = _ERRORS_BY_KIND.get(kind or "", EngineError)
    return error_cls(message)
