# Abstract base class for protocol adapters


from abc import ABC, abstractmethod


class CommunicationAdapter(ABC):
    @abstractmethod
    async def connect(self) -> None:
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass
