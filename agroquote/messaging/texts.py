"""
Человекочитаемые тексты алертов по локалям.

Площадь всегда выводится с двумя знаками после запятой.
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict

from agroquote.config.constants import DEFAULT_LOCALE

_TEMPLATES: Dict[str, Dict[str, str]] = {
    "es": {
        "HIGH_AREA_ALERT": (
            "⚠️ Se ha registrado una solicitud de cotización con {area} hectáreas aseguradas"
        ),
        "QUOTATION_CREATED": (
            "📋 Se ha registrado una solicitud de cotización: {client} - {area} hectáreas"
        ),
    },
    "en": {
        "HIGH_AREA_ALERT": "⚠️ A quotation request was registered with {area} insured hectares",
        "QUOTATION_CREATED": "📋 A quotation request was registered: {client} - {area} hectares",
    },
}


def supported_locales() -> list[str]:
    return sorted(_TEMPLATES)


def format_area(area: float) -> str:
    """Два знака, половина округляется вверх: 600.125 -> "600.13"."""
    if not math.isfinite(area):
        return str(area)
    return str(Decimal(area).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def render_alert_text(kind: str, *, client_name: str, insured_area: float, locale: str) -> str:
    """Текст алерта в нужной локали; неизвестная локаль -> локаль по умолчанию."""
    templates = _TEMPLATES.get(locale.lower().split("-")[0], _TEMPLATES[DEFAULT_LOCALE])
    return templates[kind].format(client=client_name, area=format_area(insured_area))
