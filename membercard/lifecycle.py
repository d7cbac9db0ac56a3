"""
Credential lifecycle: issuance, rotation and the display status shown to whoever scans a card.

Only ACTIVE and REVOKED are ever written here. Time-based expiry is derived on read
by comparing the expiration date with today, so a stored status never has to be
kept in sync with the calendar.
"""

import secrets
import uuid
from datetime import date

from membercard.errors import CredentialInvariantError
from membercard.models import (
    Credential, CREDENTIAL_ACTIVE, CREDENTIAL_EXPIRED, CREDENTIAL_REVOKED, MEMBER_INACTIVE
)

TOKEN_BYTES = 16

# Display statuses for a scanned credential
STATUS_VALID = 'VALID'
STATUS_REPLACED = 'REPLACED'
STATUS_EXPIRED = 'EXPIRED'
STATUS_INACTIVE_MEMBER = 'INACTIVE_MEMBER'

STATUS_LABELS = {
    STATUS_VALID: 'VIGENTE',
    STATUS_REPLACED: 'REEMPLAZADA',
    STATUS_EXPIRED: 'VENCIDA',
    STATUS_INACTIVE_MEMBER: 'MIEMBRO INACTIVO',
}


def generate_id():
    return str(uuid.uuid4())


def generate_token():
    """Opaque QR secret, 128 bits of entropy hex-encoded"""
    return secrets.token_hex(TOKEN_BYTES)


def default_expiration(issue_date=None, years=1):
    """Same calendar day `years` later; Feb 29 falls back to Feb 28"""
    issue_date = issue_date or date.today()
    try:
        return issue_date.replace(year=issue_date.year + years)
    except ValueError:
        return issue_date.replace(year=issue_date.year + years, day=28)


def issue_credential(credentials, expiration_date, today=None):
    """
    Issue a new ACTIVE credential and revoke whatever was active before.

    Args:
        credentials: the member's current credential collection
        expiration_date: expiration of the new credential, required
        today: issue date, defaults to the current date

    Returns:
        tuple: (updated collection newest-first, the new credential)
    """
    if expiration_date is None:
        raise ValueError('expiration_date is required')

    issue_date = today or date.today()
    if expiration_date < issue_date:
        raise ValueError(f'expiration_date {expiration_date} precedes issue date {issue_date}')

    # Only the status changes on superseded credentials, dates stay as issued
    for credential in credentials:
        if credential.status == CREDENTIAL_ACTIVE:
            credential.status = CREDENTIAL_REVOKED

    new_credential = Credential(
        id=generate_id(),
        token=generate_token(),
        issue_date=issue_date,
        expiration_date=expiration_date,
        status=CREDENTIAL_ACTIVE,
    )

    updated = sorted([new_credential] + list(credentials), key=lambda c: c.issue_date, reverse=True)
    return updated, new_credential


def get_active_credential(credentials):
    """Return the single ACTIVE credential, or None"""
    active = [c for c in credentials if c.status == CREDENTIAL_ACTIVE]
    if len(active) > 1:
        raise CredentialInvariantError(c.id for c in active)
    return active[0] if active else None


def display_status(member, credential, today=None):
    """
    Status shown for a scanned credential.

    Precedence: inactive member > revoked > expired (stored or by date) > valid.
    """
    if member.status == MEMBER_INACTIVE:
        return STATUS_INACTIVE_MEMBER
    if credential.status == CREDENTIAL_REVOKED:
        return STATUS_REPLACED
    if credential.status == CREDENTIAL_EXPIRED or credential.is_time_expired(today):
        return STATUS_EXPIRED
    return STATUS_VALID


def display_label(status):
    return STATUS_LABELS[status]


def build_qr_payload(base_url, member_id, token):
    """URL printed in the card QR and opened by the admin preview action"""
    return f"{base_url.rstrip('/')}/member/{member_id}?token={token}"
