"""
Pydantic-модели сообщений для RabbitMQ и WebSocket.

Wire-формат (JSON, camelCase) одинаков для брокера и WebSocket-канала:
type, timestamp, quotationId, clientName, insuredArea, insuredAmount,
crop, state, text, message, schemaVersion.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from agroquote.config.constants import (
    ALERT_SCHEMA_VERSION,
    DEFAULT_LOCALE,
    HIGH_AREA_THRESHOLD_HECTARES,
)
from agroquote.messaging.texts import render_alert_text
from agroquote.shared.exceptions import MessageDecodeError


class AlertKind(str, Enum):
    """Вид алерта (поле `type` в wire-формате)."""

    HIGH_AREA_ALERT = "HIGH_AREA_ALERT"
    QUOTATION_CREATED = "QUOTATION_CREATED"


def classify_area(
    insured_area: float, threshold: float = HIGH_AREA_THRESHOLD_HECTARES
) -> AlertKind:
    """Строго больше порога -> HIGH_AREA_ALERT; ровно порог -> QUOTATION_CREATED."""
    if insured_area > threshold:
        return AlertKind.HIGH_AREA_ALERT
    return AlertKind.QUOTATION_CREATED


def utc_timestamp(now: Optional[datetime] = None) -> str:
    """ISO-8601 с миллисекундами и суффиксом Z."""
    moment = now or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class QuotationEvent(BaseModel):
    """Факт создания котировки (уже сохранённой в БД)."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    quotation_id: str = Field(..., alias="quotationId", description="ID котировки")
    client_name: str = Field(..., alias="clientName", description="Имя клиента")
    insured_area: float = Field(..., alias="insuredArea", description="Площадь, га")
    insured_amount: float = Field(..., alias="insuredAmount", description="Страховая сумма")
    crop_name: str = Field(..., alias="cropName", description="Культура")
    state_name: str = Field(..., alias="stateName", description="Штат")


class AlertMessage(BaseModel):
    """Неизменяемый алерт; сериализуется один раз и уходит во все каналы."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    kind: AlertKind = Field(..., alias="type")
    timestamp: str = Field(..., description="Время генерации, ISO-8601")
    quotation_id: str = Field(..., alias="quotationId")
    client_name: str = Field(..., alias="clientName")
    insured_area: float = Field(..., alias="insuredArea", description="Площадь, га")
    insured_amount: float = Field(..., alias="insuredAmount")
    crop: str = Field(..., description="Название культуры")
    state: str = Field(..., description="Название штата")
    text: str
    message: str
    schema_version: int = Field(default=ALERT_SCHEMA_VERSION, alias="schemaVersion")

    @classmethod
    def from_event(
        cls,
        event: QuotationEvent,
        *,
        locale: str = DEFAULT_LOCALE,
        threshold: float = HIGH_AREA_THRESHOLD_HECTARES,
        now: Optional[datetime] = None,
    ) -> "AlertMessage":
        kind = classify_area(event.insured_area, threshold)
        human = render_alert_text(
            kind.value,
            client_name=event.client_name,
            insured_area=event.insured_area,
            locale=locale,
        )
        return cls(
            kind=kind,
            timestamp=utc_timestamp(now),
            quotation_id=event.quotation_id,
            client_name=event.client_name,
            insured_area=event.insured_area,
            insured_amount=event.insured_amount,
            crop=event.crop_name,
            state=event.state_name,
            text=human,
            message=human,
        )

    @property
    def is_high_area(self) -> bool:
        return self.kind is AlertKind.HIGH_AREA_ALERT

    def to_wire(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")


_KNOWN_KINDS = frozenset(kind.value for kind in AlertKind)


class UnknownAlert(BaseModel):
    """
    Разобранный JSON, который не является корректным алертом известного вида.

    Сюда попадают неизвестный или отсутствующий `type`, payload не-объект
    и известный `type` с неполными полями. Такие сообщения логируются и
    подтверждаются (ack).
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    kind: Any = Field(default=None, alias="type")

    @property
    def is_malformed_known_kind(self) -> bool:
        return isinstance(self.kind, str) and self.kind in _KNOWN_KINDS


DecodedAlert = Union[AlertMessage, UnknownAlert]


def decode_alert(body: Union[bytes, str]) -> DecodedAlert:
    """
    Разобрать payload из очереди.

    Любой валидный JSON даёт результат: AlertMessage для корректного алерта
    известного вида, иначе UnknownAlert.

    Raises:
        MessageDecodeError: payload не является JSON.
    """
    try:
        data: Any = json.loads(body)
    except (TypeError, ValueError) as e:
        raise MessageDecodeError("Payload is not valid JSON", original_error=e) from e

    if not isinstance(data, dict):
        return UnknownAlert.model_validate({"payload": data})

    kind = data.get("type")
    if not isinstance(kind, str) or kind not in _KNOWN_KINDS:
        return UnknownAlert.model_validate(data)

    try:
        return AlertMessage.model_validate(data)
    except ValidationError:
        return UnknownAlert.model_validate(data)
