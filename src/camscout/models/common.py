from enum import Enum

from pydantic import BaseModel


class BasePydanticModel(BaseModel):
    model_config = {
        "extra": "forbid",
        "populate_by_name": True,
        "validate_assignment": True,
    }

class ReachabilityTier(str, Enum):
    """Reachability of a device, strongest evidence first."""
    UP_WITH_AUTH = "UpWithAuth"
    UP_WITHOUT_AUTH = "UpWithoutAuth"
    REACHABLE = "Reachable"
    UNREACHABLE = "Unreachable"

    @property
    def rank(self) -> int:
        """Strength of the tier; higher is stronger."""
        return _TIER_RANKS[self]

    @property
    def is_up(self) -> bool:
        return self is not ReachabilityTier.UNREACHABLE

_TIER_RANKS = {
    ReachabilityTier.UP_WITH_AUTH: 3,
    ReachabilityTier.UP_WITHOUT_AUTH: 2,
    ReachabilityTier.REACHABLE: 1,
    ReachabilityTier.UNREACHABLE: 0,
}

class AuthMode(str, Enum):
    USERNAME_TOKEN = "usernametoken"
    DIGEST = "digest"
    BOTH = "both"
    NONE = "none"

class OperatingState(str, Enum):
    UP = "UP"
    DOWN = "DOWN"

class DiscoveryMode(str, Enum):
    NETSCAN = "netscan"
    MULTICAST = "multicast"
    BOTH = "both"

    @property
    def uses_netscan(self) -> bool:
        return self in (DiscoveryMode.NETSCAN, DiscoveryMode.BOTH)

    @property
    def uses_multicast(self) -> bool:
        return self in (DiscoveryMode.MULTICAST, DiscoveryMode.BOTH)

class NetworkProtocol(str, Enum):
    TCP = "tcp"
    UDP = "udp"

class Credentials(BasePydanticModel):
    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"
