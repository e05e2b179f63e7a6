"""Database models"""

from gearmarket.models.account import Account
from gearmarket.models.security import RefreshToken, BlockRecord

__all__ = ["Account", "RefreshToken", "BlockRecord"]
