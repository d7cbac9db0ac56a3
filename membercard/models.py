from datetime import datetime, date
from membercard import db

# Member.status values
MEMBER_ACTIVE = 'ACTIVE'
MEMBER_INACTIVE = 'INACTIVE'
MEMBER_STATUSES = (MEMBER_ACTIVE, MEMBER_INACTIVE)

# Credential.status values
CREDENTIAL_ACTIVE = 'ACTIVE'
CREDENTIAL_EXPIRED = 'EXPIRED'  # only found on imported/legacy rows, never written by issuance
CREDENTIAL_REVOKED = 'REVOKED'  # superseded by a newer credential before expiring
CREDENTIAL_STATUSES = (CREDENTIAL_ACTIVE, CREDENTIAL_EXPIRED, CREDENTIAL_REVOKED)

# Profile fields accepted from the admin API, keyed by their JSON name
MEMBER_FIELDS = {
    'firstName': 'first_name',
    'lastName': 'last_name',
    'role': 'role',
    'joinDate': 'join_date',
    'bloodType': 'blood_type',
    'curp': 'curp',
    'emergencyContact': 'emergency_contact',
    'photoUrl': 'photo_url',
    'status': 'status',
    'street': 'street',
    'houseNumber': 'house_number',
    'colony': 'colony',
    'city': 'city',
    'postalCode': 'postal_code',
}


def _iso(value):
    return value.isoformat() if value else None


class Member(db.Model):
    id = db.Column(db.String(36), primary_key=True)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    role = db.Column(db.String(100), nullable=False)  # e.g. "Presidente", "Vocal"
    join_date = db.Column(db.Date, nullable=False, default=date.today)
    blood_type = db.Column(db.String(10))
    curp = db.Column(db.String(18))
    emergency_contact = db.Column(db.String(30))
    photo_url = db.Column(db.Text, default='')  # http(s) URL, /uploads/<file> or data: URL
    status = db.Column(db.String(10), nullable=False, default=MEMBER_ACTIVE)

    # Address
    street = db.Column(db.String(200))
    house_number = db.Column(db.String(50))
    colony = db.Column(db.String(200))
    city = db.Column(db.String(200))
    postal_code = db.Column(db.String(10))

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Credential history, newest issuance first
    credentials = db.relationship(
        'Credential',
        backref='member',
        lazy='selectin',
        cascade='all, delete-orphan',
        order_by=lambda: (Credential.issue_date.desc(), Credential.created_at.desc()),
    )

    @property
    def full_name(self):
        return f'{self.first_name} {self.last_name}'.strip()

    def is_active(self):
        return self.status == MEMBER_ACTIVE

    def find_credential_by_token(self, token):
        """Search the whole history, not just the active slot"""
        for credential in self.credentials:
            if credential.token == token:
                return credential
        return None

    def to_dict(self, include_credentials=True):
        data = {
            'id': self.id,
            'firstName': self.first_name,
            'lastName': self.last_name,
            'role': self.role,
            'joinDate': _iso(self.join_date),
            'bloodType': self.blood_type,
            'curp': self.curp,
            'emergencyContact': self.emergency_contact,
            'photoUrl': self.photo_url or '',
            'status': self.status,
            'street': self.street,
            'houseNumber': self.house_number,
            'colony': self.colony,
            'city': self.city,
            'postalCode': self.postal_code,
        }
        if include_credentials:
            data['credentials'] = [c.to_dict() for c in self.credentials]
        return data

    def __repr__(self):
        return f'<Member {self.full_name}>'


class Credential(db.Model):
    id = db.Column(db.String(36), primary_key=True)
    member_id = db.Column(db.String(36), db.ForeignKey('member.id', ondelete='CASCADE'), nullable=False, index=True)
    token = db.Column(db.String(64), unique=True, nullable=False)  # QR authorization proof
    issue_date = db.Column(db.Date, nullable=False)
    expiration_date = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(10), nullable=False, default=CREDENTIAL_ACTIVE)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def is_time_expired(self, today=None):
        """Check if the expiration date has passed (the expiration day itself is still valid)"""
        today = today or date.today()
        return self.expiration_date < today

    def days_remaining(self, today=None):
        """Get number of days remaining (negative if expired)"""
        today = today or date.today()
        return (self.expiration_date - today).days

    def to_dict(self):
        return {
            'id': self.id,
            'token': self.token,
            'issueDate': _iso(self.issue_date),
            'expirationDate': _iso(self.expiration_date),
            'status': self.status,
        }

    def __repr__(self):
        return f'<Credential {self.id} {self.status} ({self.issue_date} to {self.expiration_date})>'
