# Markov corpus collection and text generation engine

from .bridge import EngineBridge
from .chain import ChainModel
from .engine import EngineCredentials, MarkovEngine
from .errors import (EmptyCorpusError, EngineError, EngineUnavailableError, MarkovError,
                     ModelEmptyError, TransportError)
from .models import CorpusFilter, CorpusStats, MessageRecord

__all__ = [
    'ChainModel', 'CorpusFilter', 'CorpusStats', 'EmptyCorpusError', 'EngineBridge',
    'EngineCredentials', 'EngineError', 'EngineUnavailableError', 'MarkovEngine',
    'MarkovError', 'MessageRecord', 'ModelEmptyError', 'TransportError',
]
