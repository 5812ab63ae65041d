from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class MessageRecord:
    """A single harvested chat message."""

    message_id: str
    author_id: str
    channel_id: str
    guild_id: str
    text: str
    timestamp_millis: int

    def has_text(self) -> bool:
        return bool(self.text and self.text.strip())


@dataclass(frozen=True)
class ChannelRef:
    channel_id: str
    guild_id: str
    name: str = ""


@dataclass
class CollectionState:
    guild_id: str
    channel_id: str
    fully_collected: bool = False


@dataclass(frozen=True)
class CorpusFilter:
    """
    Selects a slice of the corpus.

    ``global_scope`` drops guild and channel scoping; the author filter still
    applies. Guild and channel filters are combined when both are set.
    """

    guild_id: Optional[str] = None
    channel_id: Optional[str] = None
    author_id: Optional[str] = None
    global_scope: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CorpusFilter":
        data = data or {}
        return cls(
            guild_id=_optional_str(data.get("guild_id")),
            channel_id=_optional_str(data.get("channel_id")),
            author_id=_optional_str(data.get("author_id")),
            global_scope=bool(data.get("global_scope", False)),
        )


@dataclass
class CorpusStats:
    message_count: int
    author_count: int
    channel_count: int
    guild_count: int
    total_word_count: int
    unique_word_count: int
    avg_words_per_message: float
    oldest_timestamp: Optional[int]
    newest_timestamp: Optional[int]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CorpusStats":
        return cls(**data)


def _optional_str(value) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)
