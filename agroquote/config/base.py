"""
Базовые настройки приложения.

Содержит общие настройки, которые не относятся к конкретным сервисам.
"""

from pydantic import Field
from pydantic_settings import SettingsConfigDict

from agroquote.config.config_loader import BaseSettingsWithLoader
from agroquote.config.constants import API_PORT, DEFAULT_LOCALE


class AppBaseSettings(BaseSettingsWithLoader):
    """Основные настройки приложения."""

    yaml_group = "app"

    # Идентификация приложения
    app_name: str = Field(default="agroquote", description="Название приложения")
    app_version: str = Field(default="0.1.0", description="Версия приложения")

    # Порты
    backend_port: int = Field(default=API_PORT, description="Порт HTTP API")

    # Режимы работы
    debug: bool = Field(default=False, description="Режим отладки: лог каждого запроса")

    # Логирование
    log_level: str = Field(default="INFO", description="Уровень логирования")

    # Локаль текстов уведомлений
    locale: str = Field(default=DEFAULT_LOCALE, description="Локаль алертов (es/en)")

    # CORS
    cors_origins: list[str] = Field(
        default=["*"],
        description="Разрешенные CORS origins",
    )

    model_config = SettingsConfigDict(env_prefix="APP_")


app_base_settings = AppBaseSettings.get_instance()


__all__ = [
    "AppBaseSettings",
    "app_base_settings",
]
