from langgraph_checkpoint_kv.errors import (
    InvalidIdentifierError,
    InvalidWriteError,
    MalformedKeyError,
    WriteRecordError,
)
from langgraph_checkpoint_kv.keys import SEPARATOR, partition_key_for, separator
from langgraph_checkpoint_kv.saver import DatastoreSaver
from langgraph_checkpoint_kv.write import Write, WriteItem

__all__ = [
    "DatastoreSaver",
    "InvalidIdentifierError",
    "InvalidWriteError",
    "MalformedKeyError",
    "SEPARATOR",
    "Write",
    "WriteItem",
    "WriteRecordError",
    "partition_key_for",
    "separator",
]
