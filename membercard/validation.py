"""
Public validation of scanned QR codes
Classifies a (member id, token) pair against the member's full credential history
"""

from dataclasses import dataclass
from typing import Optional

from membercard.lifecycle import display_label, display_status
from membercard.models import Member, Credential

NOT_FOUND = 'NOT_FOUND'
INVALID_QR = 'INVALID_QR'


@dataclass
class LookupResult:
    member: Optional[Member]
    credential: Optional[Credential]
    error_type: Optional[str]

    @property
    def found(self):
        return self.error_type is None

    def status(self, today=None):
        """Display status of the matched credential, None unless the lookup succeeded"""
        if not self.found:
            return None
        return display_status(self.member, self.credential, today=today)

    def to_dict(self, today=None):
        data = {
            'member': self.member.to_dict() if self.member else None,
            'credential': self.credential.to_dict() if self.credential else None,
            'errorType': self.error_type,
        }
        if self.found:
            status = self.status(today)
            data['displayStatus'] = status
            data['displayLabel'] = display_label(status)
        return data


def resolve_public_lookup(store, member_id, token):
    """
    Resolve a scanned QR code.

    The token is matched against every credential the member ever held, so an
    old card scans as "replaced" instead of as an unknown code.
    """
    member = store.get_member(member_id)
    if member is None:
        return LookupResult(None, None, NOT_FOUND)

    if not token:
        return LookupResult(member, None, INVALID_QR)

    credential = member.find_credential_by_token(token)
    if credential is None:
        return LookupResult(member, None, INVALID_QR)

    return LookupResult(member, credential, None)
