from src.models.base import Base
from src.models.pool import RaydiumPool

__all__ = [
    "Base",
    "RaydiumPool",
]
