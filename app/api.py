"""HTTP route definitions for the service."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from app.accounts import require_role
from app.schemas import (
    EmailNotificationRequest,
    EmailNotificationResponse,
    HistoryResponse,
    ReadingOut,
    ReadingPayload,
)
from models.records import as_utc
from services.auth import Session
from services.history import HistoryService, build_default_history_service
from services.notifications import (
    EmailNotification,
    NotificationService,
    build_default_notifications,
)
from storage.mock_realtime_db import StoreError

router = APIRouter()


def get_history_service() -> HistoryService:
    return build_default_history_service()


def get_notifications() -> NotificationService:
    return build_default_notifications()


def _check_window(start_date: Optional[datetime], end_date: Optional[datetime]) -> None:
    if start_date is None or end_date is None:
        return
    if as_utc(start_date) > as_utc(end_date):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start_date must not be after end_date.",
        )


@router.get(
    "/devices/{device_id}/history",
    response_model=HistoryResponse,
    summary="Current normalized history for a device, newest first.",
)
async def get_history(
    device_id: str,
    start_date: Optional[datetime] = Query(None, description="Inclusive lower bound."),
    end_date: Optional[datetime] = Query(None, description="Inclusive upper bound."),
    history: HistoryService = Depends(get_history_service),
) -> HistoryResponse:
    _check_window(start_date, end_date)
    query = history.query_for(device_id, start_date, end_date)
    state = history.watch(query).state
    return HistoryResponse.from_state(
        query.device_id, state, start_date=query.start_date, end_date=query.end_date
    )


@router.get(
    "/devices/{device_id}/history/{timestamp_key}",
    response_model=ReadingOut,
    summary="Fetch a single reading by its history key.",
)
async def get_reading(
    device_id: str,
    timestamp_key: str,
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    history: HistoryService = Depends(get_history_service),
) -> ReadingOut:
    _check_window(start_date, end_date)
    reading = await history.lookup(device_id, timestamp_key, start_date, end_date)
    if reading is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Reading {timestamp_key!r} not found for device {device_id!r}.",
        )
    return ReadingOut.from_reading(reading)


@router.put(
    "/devices/{device_id}/history/{timestamp_key}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Store a raw reading in a device's history.",
)
async def put_reading(
    device_id: str,
    timestamp_key: str,
    payload: ReadingPayload,
    history: HistoryService = Depends(get_history_service),
    _session: Session = Depends(require_role("admin", "developer")),
) -> Response:
    record = payload.model_dump(exclude_none=True)
    if not record:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Reading payload is empty.",
        )
    try:
        history.record(device_id, timestamp_key, record)
    except StoreError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=exc.message,
        ) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/api/notifications/email",
    response_model=EmailNotificationResponse,
    summary="Send an email notification to opted-in users.",
)
async def send_email_notification(
    body: EmailNotificationRequest,
    notifications: NotificationService = Depends(get_notifications),
) -> EmailNotificationResponse:
    recipients = notifications.send_email(
        EmailNotification(
            subject=body.subject,
            text=body.text,
            device_id=body.device_id,
            level=body.level,
        )
    )
    return EmailNotificationResponse(success=True, recipients=recipients)


@router.get(
    "/api/notifications/email",
    summary="Describe the email notification endpoint.",
    status_code=status.HTTP_200_OK,
)
async def email_notification_status() -> dict[str, str]:
    return {
        "status": "Email notification API is operational",
        "message": "Use POST method to send notifications",
    }


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
