from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

# (topic, partition)
PartitionKey = Tuple[str, int]


@dataclass(frozen=True)
class LogMessage:
    topic: str
    partition: int
    offset: int
    value: Optional[bytes]
    key: Optional[bytes] = None

    @property
    def partition_key(self) -> PartitionKey:
        return (self.topic, self.partition)


class AbstractLogBroker(ABC):
    """
    The subset of a partitioned log the ingestion pipeline relies on.
    The broker owns the committed offsets; callers only propose them.
    """

    @abstractmethod
    async def subscribe(self) -> None:
        """Joins the consumer group, resuming from the last committed offsets."""
        pass

    @abstractmethod
    async def fetch_batch(self) -> List[LogMessage]:
        """
        Returns the next batch of messages, or an empty list when nothing
        arrived within the poll timeout. Per-partition order is preserved.
        """
        pass

    @abstractmethod
    async def commit(self, resolved: Dict[PartitionKey, int]) -> None:
        """
        Commits progress for every partition in `resolved`.

        Args:
            resolved: Last resolved offset per partition. The broker commits
                the position after it.
        """
        pass

    @abstractmethod
    async def heartbeat(self) -> None:
        """Extends the session lease without consuming further messages."""
        pass

    @abstractmethod
    async def rewind(self, messages: Sequence[LogMessage]) -> None:
        """Repositions each partition in `messages` at its first offset so the batch is redelivered."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass
