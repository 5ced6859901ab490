import logging
from google.cloud import datastore
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from langchain_core.runnables import RunnableConfig
from langgraph.checkpoint.base import (
    BaseCheckpointSaver,
    CheckpointTuple,
    Checkpoint,
    CheckpointMetadata,
    ChannelVersions,
)
from langgraph.checkpoint.serde.base import SerializerProtocol

from langgraph_checkpoint_kv.errors import MalformedKeyError
from langgraph_checkpoint_kv.keys import join_key, partition_key_for, thread_key_range
from langgraph_checkpoint_kv.write import Write

logger = logging.getLogger(__name__)

# Datastore rejects commits with more than 500 mutations.
MAX_BATCH_SIZE = 500


def _batched(items: Sequence[Any], size: int = MAX_BATCH_SIZE) -> Iterator[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class DatastoreSaver(BaseCheckpointSaver):
    """Checkpoint saver storing checkpoints and their pending writes in Datastore.

    Writes are stored as flat items keyed by partition key (thread, checkpoint
    id, namespace) and sort key (task, index); see ``Write``.
    """

    def __init__(
        self,
        *,
        project: Optional[str] = None,
        client_config: Optional[Dict[str, Any]] = None,
        serde: Optional[SerializerProtocol] = None,
        # The names of the “kinds” for checkpoints and writes.
        checkpoints_kind: str = "Checkpoint",
        writes_kind: str = "Write",
    ) -> None:
        super().__init__(serde=serde)
        self.client = datastore.Client(project=project, **(client_config or {}))
        self.checkpoints_kind = checkpoints_kind
        self.writes_kind = writes_kind

    def _checkpoint_key(self, configurable: Dict[str, Any]) -> datastore.Key:
        key_name = join_key([
            ("thread_id", configurable["thread_id"]),
            ("checkpoint_ns", configurable.get("checkpoint_ns") or ""),
            ("checkpoint_id", configurable["checkpoint_id"]),
        ])
        return self.client.key(self.checkpoints_kind, key_name)

    def get_tuple(self, config: RunnableConfig) -> Optional[CheckpointTuple]:
        configurable = self.validate_configurable(config.get("configurable"))
        entity = self._get_entity(configurable)
        if not entity:
            return None
        pending_writes = self._load_pending_writes(
            entity.get("thread_id"),
            entity.get("checkpoint_id"),
            entity.get("checkpoint_ns", ""),
        )
        return self._to_tuple(entity, pending_writes=pending_writes)

    def _load_pending_writes(
        self, thread_id: str, checkpoint_id: str, checkpoint_ns: str
    ) -> List[Tuple[str, str, Any]]:
        query = self.client.query(kind=self.writes_kind)
        query.add_filter(
            "partition_key", "=", partition_key_for(thread_id, checkpoint_id, checkpoint_ns)
        )
        writes = []
        for write_entity in query.fetch():
            try:
                writes.append(Write.from_item(write_entity))
            except MalformedKeyError:
                logger.error(
                    "Undecodable write entity %s under checkpoint %s",
                    getattr(write_entity, "key", None),
                    checkpoint_id,
                )
                raise
        # Sort keys order "10" before "9"; order by the decoded index instead.
        writes.sort(key=lambda write: (write.task_id, write.idx))
        return [
            (write.task_id, write.channel, self.serde.loads_typed((write.type, write.value)))
            for write in writes
        ]

    def _to_tuple(
        self,
        entity: Dict[str, Any],
        pending_writes: Optional[List[Tuple[str, str, Any]]] = None,
    ) -> CheckpointTuple:
        type_ = entity.get("type")
        checkpoint = self.serde.loads_typed((type_, entity.get("checkpoint")))
        metadata = self.serde.loads_typed((type_, entity.get("metadata")))
        config_out = {
            "configurable": {
                "thread_id": entity.get("thread_id"),
                "checkpoint_ns": entity.get("checkpoint_ns", ""),
                "checkpoint_id": entity.get("checkpoint_id"),
            }
        }
        parent_config = None
        if entity.get("parent_checkpoint_id"):
            parent_config = {
                "configurable": {
                    "thread_id": entity.get("thread_id"),
                    "checkpoint_ns": entity.get("checkpoint_ns", ""),
                    "checkpoint_id": entity.get("parent_checkpoint_id"),
                }
            }
        return CheckpointTuple(
            config=config_out,
            checkpoint=checkpoint,
            metadata=metadata,
            parent_config=parent_config,
            pending_writes=pending_writes,
        )

    def _get_entity(self, configurable: Dict[str, Any]) -> Optional[datastore.Entity]:
        if configurable["checkpoint_id"] is not None:
            key = self._checkpoint_key(configurable)
            return self.client.get(key)
        # No checkpoint_id: take the most recent checkpoint of the thread.
        query = self.client.query(kind=self.checkpoints_kind)
        query.add_filter("thread_id", "=", configurable["thread_id"])
        query.add_filter("checkpoint_ns", "=", configurable["checkpoint_ns"])
        query.order = ["-checkpoint_id"]
        entities = list(query.fetch(limit=1))
        return entities[0] if entities else None

    def list(
        self,
        config: Optional[RunnableConfig],
        *,
        filter: Optional[Dict[str, Any]] = None,
        before: Optional[RunnableConfig] = None,
        limit: Optional[int] = None,
    ) -> Iterator[CheckpointTuple]:
        configurable = (config or {}).get("configurable", {})
        query = self.client.query(kind=self.checkpoints_kind)
        if configurable.get("thread_id") is not None:
            query.add_filter("thread_id", "=", configurable["thread_id"])
        # An empty namespace is the root graph, not a wildcard.
        if "checkpoint_ns" in configurable:
            query.add_filter("checkpoint_ns", "=", configurable["checkpoint_ns"] or "")
        if before and before.get("configurable") and before["configurable"].get("checkpoint_id"):
            query.add_filter("checkpoint_id", "<", before["configurable"]["checkpoint_id"])
        query.order = ["-checkpoint_id"]
        # Metadata filters are applied after decoding, so the limit is counted here.
        yielded = 0
        for entity in query.fetch():
            if limit is not None and yielded >= limit:
                return
            checkpoint_tuple = self._to_tuple(entity)
            if filter and not all(
                checkpoint_tuple.metadata.get(k) == v for k, v in filter.items()
            ):
                continue
            yielded += 1
            yield checkpoint_tuple._replace(
                pending_writes=self._load_pending_writes(
                    entity.get("thread_id"),
                    entity.get("checkpoint_id"),
                    entity.get("checkpoint_ns", ""),
                )
            )

    def put(
        self,
        config: RunnableConfig,
        checkpoint: Checkpoint,
        metadata: CheckpointMetadata,
        new_versions: ChannelVersions,
    ) -> RunnableConfig:
        configurable = self.validate_configurable(config.get("configurable"))
        type1, serialized_checkpoint = self.serde.dumps_typed(checkpoint)
        type2, serialized_metadata = self.serde.dumps_typed(metadata)
        if type1 != type2:
            raise ValueError("Failed to serialize checkpoint and metadata to the same type.")

        new_configurable = dict(configurable)
        new_configurable["checkpoint_id"] = checkpoint.get("id")
        key = self._checkpoint_key(new_configurable)

        entity = datastore.Entity(key=key, exclude_from_indexes=("checkpoint", "metadata"))
        entity.update({
            "thread_id": configurable["thread_id"],
            "checkpoint_ns": configurable["checkpoint_ns"],
            "checkpoint_id": checkpoint.get("id"),
            "parent_checkpoint_id": configurable["checkpoint_id"],
            "type": type1,
            "checkpoint": serialized_checkpoint,
            "metadata": serialized_metadata,
        })
        self.client.put(entity)
        logger.debug("Stored checkpoint %s", key.name)
        return {
            "configurable": {
                "thread_id": entity["thread_id"],
                "checkpoint_ns": entity["checkpoint_ns"],
                "checkpoint_id": entity["checkpoint_id"],
            }
        }

    def put_writes(
        self,
        config: RunnableConfig,
        writes: Sequence[Tuple[str, Any]],
        task_id: str,
        task_path: str = "",
    ) -> None:
        configurable = self.validate_configurable(config.get("configurable"))
        checkpoint_id = configurable["checkpoint_id"]
        if checkpoint_id is None:
            raise ValueError("Missing checkpoint_id")
        write_entities = []
        for idx, (channel, value) in enumerate(writes):
            type_, serialized_value = self.serde.dumps_typed(value)
            write = Write(
                thread_id=configurable["thread_id"],
                checkpoint_ns=configurable["checkpoint_ns"],
                checkpoint_id=checkpoint_id,
                task_id=task_id,
                idx=idx,
                channel=channel,
                type=type_,
                value=serialized_value,
            )
            entity = datastore.Entity(
                key=self.client.key(self.writes_kind, write.entity_key),
                exclude_from_indexes=("value",),
            )
            entity.update(write.to_dict())
            write_entities.append(entity)
        for batch in _batched(write_entities):
            self.client.put_multi(batch)
        logger.debug(
            "Stored %d writes for task %s under checkpoint %s",
            len(write_entities),
            task_id,
            checkpoint_id,
        )

    def delete_thread(self, thread_id: str) -> None:
        """Delete every checkpoint and write stored for ``thread_id``."""
        query = self.client.query(kind=self.checkpoints_kind)
        query.add_filter("thread_id", "=", thread_id)
        query.keys_only()
        entity_keys = [entity.key for entity in query.fetch()]

        lower, upper = thread_key_range(thread_id)
        writes_query = self.client.query(kind=self.writes_kind)
        writes_query.add_filter("partition_key", ">=", lower)
        writes_query.add_filter("partition_key", "<", upper)
        writes_query.keys_only()
        entity_keys.extend(entity.key for entity in writes_query.fetch())

        for batch in _batched(entity_keys):
            self.client.delete_multi(batch)
        logger.debug("Deleted %d entities for thread %s", len(entity_keys), thread_id)

    def validate_configurable(self, configurable):
        if not configurable:
            raise ValueError("Missing configurable")
        thread_id = configurable.get("thread_id")
        checkpoint_ns = configurable.get("checkpoint_ns", "")
        checkpoint_id = configurable.get("checkpoint_id")
        if not isinstance(thread_id, str):
            raise ValueError("Invalid thread_id")
        if not (isinstance(checkpoint_ns, str) or checkpoint_ns is None):
            raise ValueError("Invalid checkpoint_ns")
        if not (isinstance(checkpoint_id, str) or checkpoint_id is None):
            raise ValueError("Invalid checkpoint_id")
        return {
            "thread_id": thread_id,
            "checkpoint_ns": checkpoint_ns or "",
            "checkpoint_id": checkpoint_id,
        }
