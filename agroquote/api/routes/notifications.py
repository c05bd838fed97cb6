"""
Notification pipeline routes.

- POST /events/quotation-created: точка входа workflow создания котировки
  (вызывается после сохранения котировки; публикация асинхронна).
- GET  /notifications/health: состояние брокера, WebSocket и consumer'а.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request, status

from agroquote.api.response import ok
from agroquote.messaging.broker import ConnectionState
from agroquote.messaging.models import QuotationEvent
from agroquote.services.notification_pipeline import NotificationPipeline

notifications_router = APIRouter(
    tags=["Notifications"],
    responses={404: {"description": "Not found"}},
)


def get_pipeline(request: Request) -> NotificationPipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Notification pipeline is not initialized")
    return pipeline


@notifications_router.post("/events/quotation-created", status_code=status.HTTP_202_ACCEPTED)
async def quotation_created(
    event: QuotationEvent,
    pipeline: NotificationPipeline = Depends(get_pipeline),
) -> Dict[str, Any]:
    """
    Запланировать алерт по только что созданной котировке.

    Ответ не ждёт брокер/WebSocket; ошибки пайплайна сюда не попадают.
    """
    task = pipeline.notify_quotation_created(event)
    return ok(
        data={"quotationId": event.quotation_id, "scheduled": task is not None},
        message="Alert scheduled" if task is not None else "Alert dropped",
    )


@notifications_router.get("/notifications/health")
async def notifications_health(
    pipeline: NotificationPipeline = Depends(get_pipeline),
) -> Dict[str, Any]:
    snapshot = pipeline.status()
    healthy = snapshot["broker"]["state"] == ConnectionState.CONNECTED.value
    return ok(
        data={"status": "healthy" if healthy else "degraded", **snapshot},
    )
