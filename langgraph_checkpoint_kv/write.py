from dataclasses import dataclass
from typing import Any, Dict, Mapping, Union

from langgraph_checkpoint_kv import keys
from langgraph_checkpoint_kv.errors import InvalidWriteError, MalformedKeyError


@dataclass(frozen=True)
class WriteItem:
    """Flat form of a write, shaped for a partition/sort key store."""

    partition_key: str
    sort_key: str
    channel: str
    type: str
    value: bytes

    def as_dict(self) -> Dict[str, Any]:
        return {
            "partition_key": self.partition_key,
            "sort_key": self.sort_key,
            "channel": self.channel,
            "type": self.type,
            "value": self.value,
        }

    @classmethod
    def from_mapping(cls, entity: Mapping[str, Any]) -> "WriteItem":
        """Build an item from a stored entity (or any mapping of its properties)."""
        for name in ("partition_key", "sort_key"):
            if not isinstance(entity.get(name), str):
                raise MalformedKeyError(f"Stored write is missing a string {name}")
        return cls(
            partition_key=entity["partition_key"],
            sort_key=entity["sort_key"],
            channel=entity.get("channel"),
            type=entity.get("type"),
            value=entity.get("value"),
        )


@dataclass(frozen=True, kw_only=True)
class Write:
    """One value written to one channel by one task of a checkpoint.

    ``idx`` orders the writes of a task. Identifier fields are validated on
    construction so that every ``Write`` encodes to keys that decode back to
    an equal ``Write``.
    """

    thread_id: str
    checkpoint_ns: str
    checkpoint_id: str
    task_id: str
    idx: int
    channel: str
    type: str
    value: bytes

    separator = keys.SEPARATOR

    def __post_init__(self):
        if isinstance(self.idx, bool) or not isinstance(self.idx, int):
            raise InvalidWriteError(f"idx must be an int, got {type(self.idx).__name__}")
        if self.idx < 0:
            raise InvalidWriteError(f"idx must be non-negative, got {self.idx}")
        for name in ("channel", "type"):
            if not isinstance(getattr(self, name), str):
                raise InvalidWriteError(
                    f"{name} must be a string, got {type(getattr(self, name)).__name__}"
                )
        if isinstance(self.value, (bytearray, memoryview)):
            object.__setattr__(self, "value", bytes(self.value))
        elif not isinstance(self.value, bytes):
            raise InvalidWriteError(
                f"value must be bytes, got {type(self.value).__name__}"
            )
        # Building both keys rejects identifiers that break the key grammar.
        self.to_item()

    @property
    def partition_key(self) -> str:
        return keys.partition_key_for(self.thread_id, self.checkpoint_id, self.checkpoint_ns)

    @property
    def sort_key(self) -> str:
        return keys.sort_key_for(self.task_id, self.idx)

    @property
    def entity_key(self) -> str:
        """Compose a unique key name for this write entity."""
        return f"{self.partition_key}{self.separator}{self.sort_key}"

    def to_item(self) -> WriteItem:
        return WriteItem(
            partition_key=self.partition_key,
            sort_key=self.sort_key,
            channel=self.channel,
            type=self.type,
            value=self.value,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Return a dictionary representation of this write for storing in Datastore."""
        return self.to_item().as_dict()

    @classmethod
    def from_item(cls, item: Union[WriteItem, Mapping[str, Any]]) -> "Write":
        if not isinstance(item, WriteItem):
            item = WriteItem.from_mapping(item)
        thread_id, checkpoint_id, checkpoint_ns = keys.split_partition_key(item.partition_key)
        task_id, idx = keys.split_sort_key(item.sort_key)
        return cls(
            thread_id=thread_id,
            checkpoint_ns=checkpoint_ns,
            checkpoint_id=checkpoint_id,
            task_id=task_id,
            idx=idx,
            channel=item.channel,
            type=item.type,
            value=item.value,
        )

    @staticmethod
    def compute_partition_key(item: Mapping[str, Any]) -> str:
        """Helper to create a partition key from a mapping containing thread_id, checkpoint_id, and checkpoint_ns."""
        return keys.partition_key_for(
            item["thread_id"], item["checkpoint_id"], item.get("checkpoint_ns") or ""
        )
