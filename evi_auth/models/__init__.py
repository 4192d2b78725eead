# EVI Auth Models
from evi_auth.models.base import BaseModel
from evi_auth.models.refresh_token import RefreshToken
from evi_auth.models.setting import AppSetting
from evi_auth.models.user import AccountStatus, User

__all__ = [
    "AccountStatus",
    "AppSetting",
    "BaseModel",
    "RefreshToken",
    "User",
]
