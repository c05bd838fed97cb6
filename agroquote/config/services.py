"""
Настройки внутренних сервисов.

Содержит конфигурацию для:
- RabbitMQ (подключение, топология, политика переподключения)
- WebSocket listener'а (push уведомлений в браузер)
- Алертов по котировкам (порог площади)
"""

from typing import Optional
from urllib.parse import urlsplit, urlunsplit

from pydantic import Field
from pydantic_settings import SettingsConfigDict

from agroquote.config.config_loader import BaseSettingsWithLoader
from agroquote.config.constants import (
    ALERTS_QUEUE,
    DEFAULT_AMQP_URL,
    HIGH_AREA_THRESHOLD_HECTARES,
    QUOTATION_CREATED_ROUTING_KEY,
    QUOTATION_EXCHANGE,
    RECONNECT_DELAY_SECONDS,
    RECONNECT_MAX_DELAY_SECONDS,
    WEBSOCKET_PORT,
    ReconnectStrategy,
)


class BrokerSettings(BaseSettingsWithLoader):
    """Настройки RabbitMQ."""

    yaml_group = "broker"

    # Подключение (RABBITMQ_URL)
    url: str = Field(default=DEFAULT_AMQP_URL, description="AMQP URL брокера")

    # Топология
    exchange: str = Field(default=QUOTATION_EXCHANGE, description="Topic exchange событий")
    queue: str = Field(default=ALERTS_QUEUE, description="Durable очередь алертов")
    routing_key: str = Field(
        default=QUOTATION_CREATED_ROUTING_KEY, description="Routing key привязки"
    )

    # Настройки обработки
    prefetch_count: int = Field(default=10, description="Количество предзагрузки сообщений")

    # Переподключение
    reconnect_delay: float = Field(
        default=RECONNECT_DELAY_SECONDS, description="Задержка перед переподключением (сек)"
    )
    reconnect_strategy: ReconnectStrategy = Field(
        default=ReconnectStrategy.FIXED, description="fixed или exponential"
    )
    reconnect_max_delay: float = Field(
        default=RECONNECT_MAX_DELAY_SECONDS, description="Максимальная задержка (exponential)"
    )
    reconnect_jitter: float = Field(default=0.0, description="Доля случайного разброса (0..1)")
    max_reconnect_attempts: Optional[int] = Field(
        default=None, description="Лимит попыток подряд (None = без лимита)"
    )

    @property
    def safe_url(self) -> str:
        """URL без пароля (для логов и health)."""
        parts = urlsplit(self.url)
        if parts.password is None:
            return self.url
        netloc = f"{parts.username}:***@{parts.hostname}"
        if parts.port:
            netloc += f":{parts.port}"
        return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))

    model_config = SettingsConfigDict(env_prefix="RABBITMQ_")


class WebSocketSettings(BaseSettingsWithLoader):
    """Настройки WebSocket listener'а."""

    yaml_group = "websocket"

    enabled: bool = Field(default=True, description="Поднимать ли listener")
    host: str = Field(default="0.0.0.0", description="Адрес привязки")
    port: int = Field(default=WEBSOCKET_PORT, description="Порт WebSocket")

    model_config = SettingsConfigDict(env_prefix="WS_")


class AlertSettings(BaseSettingsWithLoader):
    """Настройки классификации алертов."""

    yaml_group = "alerts"

    high_area_threshold: float = Field(
        default=HIGH_AREA_THRESHOLD_HECTARES,
        description="Порог площади (га) для HIGH_AREA_ALERT (строго больше)",
    )

    model_config = SettingsConfigDict(env_prefix="ALERTS_")


broker_settings = BrokerSettings.get_instance()
websocket_settings = WebSocketSettings.get_instance()
alert_settings = AlertSettings.get_instance()


__all__ = [
    "BrokerSettings",
    "WebSocketSettings",
    "AlertSettings",
    "broker_settings",
    "websocket_settings",
    "alert_settings",
]
