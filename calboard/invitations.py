"""Invitation checks and invitation-gated registration."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .backend import BackendClient
from .crud import InvitationUnavailableError, get_invitation, redeem_invitation
from .identity import IdentityError
from .utils import utcnow

logger = logging.getLogger("uvicorn.error")

VALIDATION_FAILED = "We could not verify this invitation."
PASSWORD_MISMATCH = "Passwords do not match."
INVALID_INVITATION = "This invitation link is not valid."
REGISTRATION_FAILED = "Something went wrong while creating your account."

REGISTRATION_MESSAGES = {
    "auth/email-already-in-use": "This email address is already in use.",
    "auth/invalid-email": "The email address is not valid.",
    "auth/weak-password": "The password is too weak. Choose a stronger password.",
    "auth/api-key-not-valid": "The service API key is not valid. Check the server configuration.",
}


class RegistrationError(Exception):
    """A user-readable registration failure."""


@dataclass(frozen=True)
class InvitationCheck:
    valid: bool
    error: str | None = None


def validate_invitation(db: Session, invitation_id: str | None) -> bool:
    """Return True only for an existing, unused invitation."""
    if not (invitation_id or "").strip():
        return False
    invitation = get_invitation(db, invitation_id)
    return invitation is not None and not invitation.used


def check_invitation(backend: BackendClient, invitation_id: str | None) -> InvitationCheck:
    """Read-only check run when the registration page loads."""
    try:
        with backend.session() as db:
            return InvitationCheck(valid=validate_invitation(db, invitation_id))
    except SQLAlchemyError:
        logger.exception("Invitation lookup failed for %s", invitation_id)
        return InvitationCheck(valid=False, error=VALIDATION_FAILED)


def registration_message(exc: Exception) -> str:
    if isinstance(exc, IdentityError):
        return REGISTRATION_MESSAGES.get(exc.code, REGISTRATION_FAILED)
    return REGISTRATION_FAILED


def register_account(
    backend: BackendClient,
    *,
    invitation_id: str | None,
    invitation_valid: bool,
    email: str,
    password: str,
    confirm_password: str,
    display_name: str,
) -> str:
    """Create an account and redeem its invitation in one transaction.

    Returns the new user's id. Raises :class:`RegistrationError` with a
    user-readable message; nothing is persisted when it does.
    """
    invitation_id = (invitation_id or "").strip()
    if password != confirm_password:
        raise RegistrationError(PASSWORD_MISMATCH)
    if not invitation_valid or not invitation_id:
        raise RegistrationError(INVALID_INVITATION)

    try:
        with backend.session() as db:
            user = backend.identity.create_user(db, email=email, password=password)
            backend.identity.update_profile(db, user, display_name=display_name)
            redeem_invitation(db, invitation_id, user_id=user.id, used_at=utcnow())
            user_id = user.id
    except InvitationUnavailableError as exc:
        logger.warning("Invitation %s was already redeemed", invitation_id)
        raise RegistrationError(INVALID_INVITATION) from exc
    except IdentityError as exc:
        logger.warning("Registration rejected by identity provider: %s", exc.code)
        raise RegistrationError(registration_message(exc)) from exc
    except SQLAlchemyError as exc:
        logger.exception("Registration failed for invitation %s", invitation_id)
        raise RegistrationError(REGISTRATION_FAILED) from exc

    logger.info("Invitation %s redeemed by %s", invitation_id, user_id)
    return user_id
