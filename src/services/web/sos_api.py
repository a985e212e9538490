"""
SOS HTTP API

REST surface over the escalation engine and the emergency contact
directory, built with FastAPI.
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from src.models.alert import Alert, EmergencyContact
from src.services.sos.contact_directory import ContactDirectory
from src.services.sos.errors import InvalidTransition, LocationUnavailable, PersistenceFailure
from src.services.sos.escalation_engine import (
    DEFAULT_DESCRIPTION, SOSEscalationEngine, TransitionResult
)


class LocationModel(BaseModel):
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    address: Optional[str] = None
    captured_at: datetime


class AlertResponse(BaseModel):
    id: str
    user_id: str
    status: str
    location: Optional[LocationModel] = None
    description: str
    created_at: datetime
    updated_at: datetime
    resolved_at: Optional[datetime] = None
    is_escalated: bool
    sequence: int


class TransitionResponse(BaseModel):
    alert: AlertResponse
    state: str
    persistence_error: Optional[str] = None


class ActivateRequest(BaseModel):
    user_id: Optional[str] = None
    description: str = DEFAULT_DESCRIPTION


class StatusResponse(BaseModel):
    state: str
    alert: Optional[AlertResponse] = None
    time_remaining_seconds: float
    is_escalated: bool
    notifications_sent: int


class NotificationEntryResponse(BaseModel):
    alert_id: str
    contact_id: str
    channel: str
    outcome: str
    pass_kind: str
    message: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime


class ContactRequest(BaseModel):
    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    relationship: str = "Contact"
    is_primary: bool = False


class ContactResponse(BaseModel):
    id: str
    name: str
    phone: str
    relationship: str
    is_primary: bool


def _alert_response(alert: Alert) -> AlertResponse:
    return AlertResponse(**alert.to_dict())


def _transition_response(result: TransitionResult) -> TransitionResponse:
    error = result.persistence_error
    return TransitionResponse(
        alert=_alert_response(result.alert),
        state=result.state.value,
        persistence_error=str(error) if error else None
    )


def create_sos_app(engine: SOSEscalationEngine, contacts: ContactDirectory) -> FastAPI:
    """
    Build the SOS API application

    Args:
        engine: Escalation engine the endpoints drive
        contacts: Directory backing the /contacts endpoints

    Returns:
        Configured FastAPI application
    """
    logger = logging.getLogger(__name__)

    app = FastAPI(
        title="SecureNow SOS",
        description="SOS escalation service API",
        version="1.0.0"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.post("/sos/activate", response_model=TransitionResponse, status_code=201)
    async def activate_sos(request: Optional[ActivateRequest] = None):
        request = request or ActivateRequest()
        try:
            result = await engine.activate(user_id=request.user_id, description=request.description)
        except InvalidTransition as e:
            raise HTTPException(status_code=409, detail=str(e))
        except LocationUnavailable as e:
            raise HTTPException(status_code=428, detail=str(e))
        return _transition_response(result)

    @app.post("/sos/cancel")
    async def cancel_sos():
        result = await engine.cancel()
        if result is None:
            return {"status": engine.state.value}
        return _transition_response(result)

    @app.post("/sos/resolve")
    async def resolve_sos():
        result = await engine.resolve()
        if result is None:
            return {"status": engine.state.value}
        return _transition_response(result)

    @app.get("/sos/status", response_model=StatusResponse)
    async def get_status():
        alert = engine.current_alert()
        return StatusResponse(
            state=engine.state.value,
            alert=_alert_response(alert) if alert else None,
            time_remaining_seconds=engine.time_remaining().total_seconds(),
            is_escalated=engine.is_escalated,
            notifications_sent=len(engine.notification_log) if alert else 0
        )

    @app.get("/sos/alerts/{user_id}", response_model=List[AlertResponse])
    async def get_alert_history(user_id: str):
        try:
            alerts = engine.history(user_id)
        except PersistenceFailure as e:
            logger.error(f"Failed to load alert history for {user_id}: {e}")
            raise HTTPException(status_code=503, detail=str(e))
        return [_alert_response(alert) for alert in alerts]

    @app.get("/sos/alerts/{alert_id}/notifications", response_model=List[NotificationEntryResponse])
    async def get_alert_notifications(alert_id: str):
        try:
            if engine.store.get(alert_id) is None:
                raise HTTPException(status_code=404, detail="Alert not found")
            entries = engine.store.get_notifications(alert_id)
        except PersistenceFailure as e:
            logger.error(f"Failed to load notifications for {alert_id}: {e}")
            raise HTTPException(status_code=503, detail=str(e))
        return [NotificationEntryResponse(**entry.to_dict()) for entry in entries]

    @app.get("/contacts", response_model=List[ContactResponse])
    async def list_contacts():
        return [ContactResponse(**contact.to_dict()) for contact in contacts.get_contacts()]

    @app.post("/contacts", response_model=ContactResponse, status_code=201)
    async def add_contact(request: ContactRequest):
        contact = EmergencyContact(
            name=request.name,
            phone=request.phone,
            relationship=request.relationship,
            is_primary=request.is_primary
        )
        try:
            stored = contacts.add_contact(contact)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        except PersistenceFailure as e:
            raise HTTPException(status_code=503, detail=str(e))
        return ContactResponse(**stored.to_dict())

    @app.delete("/contacts/{contact_id}")
    async def remove_contact(contact_id: str):
        try:
            removed = contacts.remove_contact(contact_id)
        except PersistenceFailure as e:
            raise HTTPException(status_code=503, detail=str(e))
        if not removed:
            raise HTTPException(status_code=404, detail="Contact not found")
        return {"success": True, "message": f"Contact {contact_id} removed"}

    return app
