"""
Корневая конфигурация приложения.

Важно:
- Settings: лёгкий facade с @property, который всегда возвращает
  singleton-экземпляры через get_instance(). После ConfigLoader.clear_cache()
  следующий доступ перечитывает env/YAML.
"""

from agroquote.config.base import AppBaseSettings, app_base_settings
from agroquote.config.services import (
    AlertSettings,
    BrokerSettings,
    WebSocketSettings,
    alert_settings,
    broker_settings,
    websocket_settings,
)


class Settings:
    """Facade around singleton settings groups."""

    @property
    def app(self) -> AppBaseSettings:
        return AppBaseSettings.get_instance()

    @property
    def broker(self) -> BrokerSettings:
        return BrokerSettings.get_instance()

    @property
    def websocket(self) -> WebSocketSettings:
        return WebSocketSettings.get_instance()

    @property
    def alerts(self) -> AlertSettings:
        return AlertSettings.get_instance()


# Единый экземпляр настроек приложения (facade)
settings = Settings()


__all__ = [
    "Settings",
    "settings",
    "AppBaseSettings",
    "app_base_settings",
    "BrokerSettings",
    "WebSocketSettings",
    "AlertSettings",
    "broker_settings",
    "websocket_settings",
    "alert_settings",
]
