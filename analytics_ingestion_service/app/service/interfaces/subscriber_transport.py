from abc import ABC, abstractmethod


class AbstractSubscriberTransport(ABC):
    """A live subscriber connection as seen by the broadcast hub."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        pass

    @abstractmethod
    async def send_text(self, data: str) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass
