"""Drive authorization wizard endpoints.

Each owner gets their own in-memory wizard; the credential record it writes
is shared by the whole deployment.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from snapsync.api.errors import to_http_exception
from snapsync.auth.session import Operator, require_owner
from snapsync.auth.wizard import (
    AuthorizationPending,
    AuthorizationWizard,
    CodePrompt,
    Complete,
    Failed,
    GuideStep,
    WizardState,
    state_name,
)
from snapsync.errors import BackupSubsystemError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin/backup/wizard", tags=["backup"])

# Wizards by operator id
_wizards: dict[int, AuthorizationWizard] = {}


class WizardStateResponse(BaseModel):
    state: str
    step: Optional[int] = None
    total_steps: int
    auth_url: Optional[str] = None
    warnings: list[str] = []
    reason: Optional[str] = None
    message: Optional[str] = None


class CredentialsRequest(BaseModel):
    client_id: str
    client_secret: str


class CodeRequest(BaseModel):
    code: str


def get_wizard(operator: Operator) -> AuthorizationWizard:
    wizard = _wizards.get(operator.operator_id)
    if wizard is None:
        wizard = AuthorizationWizard()
        _wizards[operator.operator_id] = wizard
    return wizard


def reset_wizards() -> None:
    _wizards.clear()


def _render(wizard: AuthorizationWizard, state: Optional[WizardState] = None) -> WizardStateResponse:
    state = state or wizard.state
    response = WizardStateResponse(state=state_name(state), total_steps=wizard.guide_steps)
    if isinstance(state, GuideStep):
        response.step = state.number
    elif isinstance(state, (AuthorizationPending, CodePrompt)):
        response.auth_url = state.auth_url
    elif isinstance(state, Complete):
        response.warnings = list(state.warnings)
    elif isinstance(state, Failed):
        response.reason = state.reason
        response.message = state.message
        response.auth_url = state.auth_url
    return response


@router.get("", response_model=WizardStateResponse)
async def wizard_state(owner: Operator = Depends(require_owner)):
    return _render(get_wizard(owner))


@router.post("/restart", response_model=WizardStateResponse)
async def wizard_restart(owner: Operator = Depends(require_owner)):
    wizard = get_wizard(owner)
    return _render(wizard, await wizard.restart())


@router.post("/next", response_model=WizardStateResponse)
async def wizard_next(owner: Operator = Depends(require_owner)):
    wizard = get_wizard(owner)
    try:
        return _render(wizard, wizard.next())
    except BackupSubsystemError as e:
        raise to_http_exception(e)


@router.post("/back", response_model=WizardStateResponse)
async def wizard_back(owner: Operator = Depends(require_owner)):
    wizard = get_wizard(owner)
    try:
        return _render(wizard, wizard.back())
    except BackupSubsystemError as e:
        raise to_http_exception(e)


@router.post("/credentials", response_model=WizardStateResponse)
async def wizard_credentials(
    request: CredentialsRequest,
    owner: Operator = Depends(require_owner),
):
    """Store the OAuth client and return the Google authorization URL."""
    wizard = get_wizard(owner)
    try:
        state = await wizard.submit_credentials(request.client_id, request.client_secret)
    except BackupSubsystemError as e:
        raise to_http_exception(e)
    logger.info(f"Backup OAuth client submitted by {owner.email}")
    return _render(wizard, state)


@router.post("/code-prompt", response_model=WizardStateResponse)
async def wizard_code_prompt(owner: Operator = Depends(require_owner)):
    wizard = get_wizard(owner)
    try:
        return _render(wizard, wizard.open_code_prompt())
    except BackupSubsystemError as e:
        raise to_http_exception(e)


@router.post("/code", response_model=WizardStateResponse)
async def wizard_code(
    request: CodeRequest,
    owner: Operator = Depends(require_owner),
):
    """Exchange the pasted authorization code for a refresh token."""
    wizard = get_wizard(owner)
    try:
        state = await wizard.submit_code(request.code)
    except BackupSubsystemError as e:
        raise to_http_exception(e)
    logger.info(f"Backup authorization completed by {owner.email}")
    return _render(wizard, state)
