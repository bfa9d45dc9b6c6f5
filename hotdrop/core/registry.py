"""Client registry keyed by normalized peer address."""

import logging
from typing import Dict, List, Optional, Tuple

from hotdrop.models.client import ClientInfo
from hotdrop.core.observer import TransferObserver, notify_new_client

logger = logging.getLogger(__name__)


def identify(source_address: Optional[str]) -> Optional[str]:
    """
    Normalize a raw transport address into a client identity.

    IPv6-style forms such as ``::ffff:192.168.43.12`` resolve to the part
    after the last colon, so a peer seen through both stacks is tracked once.

    Args:
        source_address: Address string reported by the transport

    Returns:
        The canonical identity, or None for a missing or blank address
    """
    value = (source_address or "").strip()
    if not value:
        return None
    if value.count(":") >= 2:
        return value[value.rindex(":") + 1:]
    return value


class ClientRegistry:
    """Append-only record of every peer that has contacted the server."""

    def __init__(self, observer: Optional[TransferObserver] = None):
        self.observer = observer or TransferObserver()
        self._clients: Dict[str, ClientInfo] = {}

    def record_if_new(self, identity: str, user_agent: Optional[str] = None) -> Tuple[ClientInfo, bool]:
        """
        Record a peer on first contact.

        Args:
            identity: Normalized client identity
            user_agent: User-Agent header of the first request, if any

        Returns:
            The stored record and whether this call created it
        """
        candidate = ClientInfo(ip=identity, user_agent=user_agent)
        # setdefault is an atomic insert-if-absent, so only one caller wins
        info = self._clients.setdefault(identity, candidate)
        is_new = info is candidate
        if is_new:
            logger.info(f"new client: {identity} UA={user_agent}")
            notify_new_client(self.observer, info)
        return info, is_new

    def get(self, identity: str) -> Optional[ClientInfo]:
        return self._clients.get(identity)

    def list(self) -> List[str]:
        """Sorted identities of every known client."""
        return sorted(self._clients.keys())

    def snapshot(self) -> List[ClientInfo]:
        """All client records, ordered by identity."""
        clients = dict(self._clients)
        return [clients[identity] for identity in sorted(clients)]

    def __contains__(self, identity: object) -> bool:
        return identity in self._clients

    def __len__(self) -> int:
        return len(self._clients)
