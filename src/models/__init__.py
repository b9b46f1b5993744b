from src.models.base import Base
from src.models.pool import PoolRecord, SwapAttempt

__all__ = [
    "Base",
    "PoolRecord",
    "SwapAttempt",
]
