"""
Registry of Flagsense clients, one per SDK id.
"""

from typing import Dict, Iterator, Optional

from flagsense.client import Flagsense
from flagsense.config import FlagsenseConfig
from flagsense.models import VariantEvaluator


class FlagsenseRegistry:
    """
    Holds one client per SDK id for the application that owns the registry.

    Example:
        ```python
        registry = FlagsenseRegistry()
        client = registry.create_service(FlagsenseConfig(sdk_id="id", sdk_secret="secret"))
        await client.init()
        ...
        await registry.close_all()
        ```
    """

    def __init__(self):
        self._clients: Dict[str, Flagsense] = {}

    def create_service(
        self,
        config: FlagsenseConfig,
        evaluator: Optional[VariantEvaluator] = None,
    ) -> Flagsense:
        """
        Get the client for ``config.sdk_id``, creating it on first use.

        Later calls with the same SDK id return the existing client and
        ignore the rest of the configuration.
        """
        client = self._clients.get(config.sdk_id)
        if client is None:
            client = Flagsense(config, evaluator=evaluator)
            self._clients[config.sdk_id] = client
        return client

    def get(self, sdk_id: str) -> Optional[Flagsense]:
        return self._clients.get(sdk_id)

    def __contains__(self, sdk_id: str) -> bool:
        return sdk_id in self._clients

    def __iter__(self) -> Iterator[Flagsense]:
        return iter(list(self._clients.values()))

    def __len__(self) -> int:
        return len(self._clients)

    async def remove(self, sdk_id: str) -> None:
        """Close and forget the client for ``sdk_id``."""
        client = self._clients.pop(sdk_id, None)
        if client is not None:
            await client.close()

    async def close_all(self) -> None:
        """Close every client."""
        clients, self._clients = list(self._clients.values()), {}
        for client in clients:
            await client.close()
