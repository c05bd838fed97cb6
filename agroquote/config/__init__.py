"""
Конфигурация приложения.

Модуль содержит:
- Константы (constants.py)
- Загрузчик конфигурации (config_loader.py)
- Централизованные настройки (settings.py)

Пример использования:
    from agroquote.config import settings

    print(settings.broker.url)
    print(settings.websocket.port)

    from agroquote.config import HIGH_AREA_THRESHOLD_HECTARES
"""

from agroquote.config.settings import settings

from agroquote.config.constants import (
    ALERT_SCHEMA_VERSION,
    ALERTS_QUEUE,
    API_PORT,
    DEFAULT_AMQP_URL,
    DEFAULT_LOCALE,
    HIGH_AREA_THRESHOLD_HECTARES,
    QUOTATION_CREATED_ROUTING_KEY,
    QUOTATION_EXCHANGE,
    RECONNECT_DELAY_SECONDS,
    SHUTDOWN_DRAIN_TIMEOUT_SECONDS,
    WEBSOCKET_PORT,
    ReconnectStrategy,
)

__all__ = [
    "settings",
    # Topology
    "QUOTATION_EXCHANGE",
    "ALERTS_QUEUE",
    "QUOTATION_CREATED_ROUTING_KEY",
    "DEFAULT_AMQP_URL",
    # Reconnect
    "RECONNECT_DELAY_SECONDS",
    "ReconnectStrategy",
    # Alerts
    "HIGH_AREA_THRESHOLD_HECTARES",
    "ALERT_SCHEMA_VERSION",
    "DEFAULT_LOCALE",
    # Ports
    "API_PORT",
    "WEBSOCKET_PORT",
    # Shutdown
    "SHUTDOWN_DRAIN_TIMEOUT_SECONDS",
]
