from .settings import (
    GoogleSettings,
    LLMSettings,
    PublishSettings,
    ReplySettings,
    Settings,
    TenantSettings,
    get_settings,
)

__all__ = [
    "GoogleSettings",
    "LLMSettings",
    "PublishSettings",
    "ReplySettings",
    "Settings",
    "TenantSettings",
    "get_settings",
]
