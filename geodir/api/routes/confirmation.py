"""Confirmation links: requesting an email confirmation and redeeming tokens."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from geodir.api.deps import get_current_user_id, get_services
from geodir.container import Services

router = APIRouter(tags=["Confirmation"])


class ConfirmRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=512)


class ConfirmResponse(BaseModel):
    subject: str
    state: str


class EmailConfirmationRequested(BaseModel):
    sent: bool
    already_confirmed: bool


@router.post("/confirm-email-address", response_model=ConfirmResponse)
async def confirm_email_address(
    body: ConfirmRequest,
    services: Services = Depends(get_services),
) -> ConfirmResponse:
    token = await services.gate.redeem(body.token)
    return ConfirmResponse(subject=token.subject.value, state=token.state.value)


@router.post("/request-email-confirmation", response_model=EmailConfirmationRequested, status_code=202)
async def request_email_confirmation(
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> EmailConfirmationRequested:
    """Mail the caller a link for `POST /confirm-email-address`."""
    sent = await services.email_confirmation.request_email_confirmation(user_id)
    return EmailConfirmationRequested(sent=sent, already_confirmed=not sent)
