"""Client model for peers seen by the server."""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


def _now_millis() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class ClientInfo:
    """Represents a peer as it was first seen by the server."""

    ip: str
    user_agent: Optional[str] = None
    connected_at: int = field(default_factory=_now_millis)

    def to_dict(self) -> Dict[str, Any]:
        """Convert client info to dictionary representation."""
        return {
            'ip': self.ip,
            'user_agent': self.user_agent,
            'connected_at': self.connected_at
        }

    def __repr__(self) -> str:
        return f"ClientInfo(ip={self.ip!r}, user_agent={self.user_agent!r}, connected_at={self.connected_at!r})"
