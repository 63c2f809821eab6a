"""Holder discovery port interface: who currently holds a device or port."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Union


@dataclass(frozen=True)
class ResourceId:
    """An exclusively-held resource: a device node or a TCP port."""
    kind: str  # "device" | "port"
    value: Union[str, int]

    @classmethod
    def device(cls, path: str) -> "ResourceId":
        return cls("device", path)

    @classmethod
    def port(cls, port: int) -> "ResourceId":
        return cls("port", int(port))

    def __str__(self) -> str:
        return f"{self.kind}:{self.value}"


class HolderDiscoveryStrategy(ABC):
    """One way of finding the PIDs that hold a resource."""
    
    name: str = "strategy"
    
    @abstractmethod
    async def find_holders(self, resource: ResourceId) -> List[int]:
        """Return holder PIDs (empty if none found or not applicable).
        
        May raise; the arbiter logs and moves on to the next strategy.
        """
        pass
