"""Interactive OAuth authorization wizard for the backup Drive account.

State machine:

    GuideStep(1) <-> ... <-> GuideStep(N)
        -> CredentialsPrompt
        -> AuthorizationPending(auth_url)
        -> CodePrompt(auth_url)
        -> Complete | Failed(reason)

A failed exchange keeps the authorization URL, so the operator can paste a
new code or go back to the credentials prompt without restarting.

The wizard only talks to the credential store and the token endpoint. Screens
are rendered by whoever subscribes to its state changes.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional, Union

from snapsync.auth import google
from snapsync.auth.credentials import (
    Active,
    CredentialStore,
    Empty,
    PendingAuthorization,
    get_credential_store,
    utcnow,
)
from snapsync.config import get_settings
from snapsync.errors import (
    AuthorizationError,
    CredentialStateMissing,
    InvalidAuthorizationCode,
    InvalidClientCredentials,
    NoRefreshTokenGranted,
    WizardTransitionError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GuideStep:
    number: int


@dataclass(frozen=True)
class CredentialsPrompt:
    pass


@dataclass(frozen=True)
class AuthorizationPending:
    auth_url: str


@dataclass(frozen=True)
class CodePrompt:
    auth_url: str


@dataclass(frozen=True)
class Complete:
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class Failed:
    reason: str
    message: str = ""
    # Set while a pasted code can still be retried against the stored client
    auth_url: Optional[str] = None


WizardState = Union[GuideStep, CredentialsPrompt, AuthorizationPending, CodePrompt, Complete, Failed]

TokenExchange = Callable[[str, str, str], Awaitable[dict]]
StateListener = Callable[[WizardState], None]


def state_name(state: WizardState) -> str:
    """Snake-case name of a state, e.g. ``guide_step`` or ``code_prompt``."""
    names = {
        GuideStep: "guide_step",
        CredentialsPrompt: "credentials_prompt",
        AuthorizationPending: "authorization_pending",
        CodePrompt: "code_prompt",
        Complete: "complete",
        Failed: "failed",
    }
    return names[type(state)]


@dataclass
class AuthorizationWizard:
    """One operator's walk through the Drive authorization setup."""

    store: CredentialStore = field(default_factory=get_credential_store)
    guide_steps: Optional[int] = None
    code_max_age: Optional[timedelta] = None
    min_code_length: Optional[int] = None
    exchange: Optional[TokenExchange] = None
    clock: Callable[[], datetime] = utcnow

    def __post_init__(self):
        settings = get_settings()
        if self.guide_steps is None:
            self.guide_steps = settings.wizard_guide_steps
        if self.code_max_age is None:
            self.code_max_age = timedelta(minutes=settings.oauth_code_max_age_minutes)
        if self.min_code_length is None:
            self.min_code_length = settings.oauth_min_code_length
        if self.exchange is None:
            self.exchange = google.exchange_code_for_tokens
        self._state: WizardState = GuideStep(1)
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> WizardState:
        return self._state

    def subscribe(self, listener: StateListener) -> None:
        """Register a callback invoked with every new state."""
        self._listeners.append(listener)

    def _transition(self, new_state: WizardState) -> WizardState:
        old_state = self._state
        self._state = new_state
        logger.debug(f"Wizard transition: {old_state} -> {new_state}")
        for listener in self._listeners:
            try:
                listener(new_state)
            except Exception as e:
                logger.exception(f"Wizard state listener failed: {e}")
        return new_state

    def _fail(self, error: AuthorizationError, retryable: bool = True) -> AuthorizationError:
        auth_url = self._auth_url() if retryable else None
        self._transition(Failed(reason=error.code, message=error.user_message, auth_url=auth_url))
        return error

    def _auth_url(self) -> Optional[str]:
        state = self._state
        if isinstance(state, (AuthorizationPending, CodePrompt, Failed)):
            return state.auth_url
        return None

    def _reject(self, action: str) -> WizardTransitionError:
        return WizardTransitionError(
            f"Cannot {action} from state {state_name(self._state)}",
            details={"state": state_name(self._state)},
        )

    # -- navigation ---------------------------------------------------------

    async def restart(self) -> WizardState:
        """Go back to the first guide step.

        Only unreadable stored data is cleared here; Pending and Active
        credentials are left untouched.
        """
        record = await self.store.get()
        if isinstance(record, Empty) and record.corrupt:
            logger.warning("Clearing unreadable backup credential before restarting setup")
            await self.store.clear()
        return self._transition(GuideStep(1))

    def next(self) -> WizardState:
        state = self._state
        if isinstance(state, GuideStep):
            if state.number >= self.guide_steps:
                return self._transition(CredentialsPrompt())
            return self._transition(GuideStep(state.number + 1))
        raise self._reject("go to the next step")

    def back(self) -> WizardState:
        state = self._state
        if isinstance(state, GuideStep):
            return self._transition(GuideStep(max(state.number - 1, 1)))
        if isinstance(state, CredentialsPrompt):
            return self._transition(GuideStep(self.guide_steps))
        if isinstance(state, (AuthorizationPending, CodePrompt, Failed)):
            return self._transition(CredentialsPrompt())
        raise self._reject("go back")

    def open_code_prompt(self) -> WizardState:
        state = self._state
        if isinstance(state, AuthorizationPending):
            return self._transition(CodePrompt(auth_url=state.auth_url))
        if isinstance(state, CodePrompt):
            return state
        if isinstance(state, Failed) and state.auth_url:
            return self._transition(CodePrompt(auth_url=state.auth_url))
        raise self._reject("open the code prompt")

    # -- interactive stages -------------------------------------------------

    async def submit_credentials(self, client_id: str, client_secret: str) -> WizardState:
        """Store the OAuth client and produce the authorization URL.

        Supersedes any earlier pending authorization.
        """
        if not isinstance(self._state, (CredentialsPrompt, AuthorizationPending, CodePrompt, Failed)):
            raise self._reject("submit credentials")

        client_id = (client_id or "").strip()
        client_secret = (client_secret or "").strip()
        if not client_id or not client_secret:
            raise InvalidClientCredentials("Client ID and client secret are required")

        auth_url = google.build_auth_url(client_id)
        await self.store.set_pending(client_id, client_secret)
        logger.info("Backup authorization started; waiting for authorization code")
        return self._transition(AuthorizationPending(auth_url=auth_url))

    async def submit_code(self, code: str) -> WizardState:
        """Exchange the pasted authorization code for a refresh token."""
        if not self._auth_url():
            raise self._reject("submit an authorization code")

        code = (code or "").strip()
        if len(code) < self.min_code_length:
            raise InvalidAuthorizationCode(
                f"Authorization code too short ({len(code)} characters)"
            )

        record = await self.store.get()
        if not isinstance(record, PendingAuthorization):
            if isinstance(record, Active):
                logger.warning("Authorization code submitted but no authorization is pending")
            raise self._fail(CredentialStateMissing(
                "No pending authorization stored",
                details={"stored_state": type(record).__name__},
            ), retryable=False)

        warnings: list[str] = []
        age = self.clock() - record.issued_at
        if age > self.code_max_age:
            message = (
                f"Authorization code may have expired "
                f"(requested {age.total_seconds() / 60:.1f} minutes ago)"
            )
            logger.warning(f"[OAuth] {message}")
            warnings.append(message)

        try:
            tokens = await self.exchange(code, record.client_id, record.client_secret)
        except AuthorizationError as e:
            raise self._fail(e)

        refresh_token = tokens.get("refresh_token")
        if not refresh_token:
            raise self._fail(NoRefreshTokenGranted(
                "Token exchange succeeded without a refresh token"
            ))

        await self.store.set_active(record.client_id, record.client_secret, refresh_token)
        logger.info("Backup authorization completed")
        return self._transition(Complete(warnings=tuple(warnings)))
