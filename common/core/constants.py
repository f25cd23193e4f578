from enum import Enum


class Environment(str, Enum):
    """Environment profiles."""

    LOCAL = "local"
    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class LockProvider(str, Enum):
    """Distributed lock provider types."""

    REDIS = "redis"
    MEMORY = "memory"
