import base64
from datetime import date
from io import BytesIO

import pytest
from PIL import Image

from membercard import create_app
from membercard.models import Member, Credential, CREDENTIAL_ACTIVE
from membercard.store import get_store

ADMIN_PASSWORD = 'test-password'
PUBLIC_BASE_URL = 'https://cards.example.org'


@pytest.fixture
def app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test-secret',
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'UPLOAD_FOLDER': str(tmp_path / 'uploads'),
        'ADMIN_PASSWORD': ADMIN_PASSWORD,
        'PUBLIC_BASE_URL': PUBLIC_BASE_URL,
        'CARD_FRONT_TEMPLATE': None,
        'CARD_BACK_TEMPLATE': None,
        'PHOTO_FETCH_TIMEOUT': 1,
    })
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(client):
    response = client.post('/api/login', json={'password': ADMIN_PASSWORD})
    assert response.status_code == 200
    return {'Authorization': f"Bearer {response.get_json()['token']}"}


@pytest.fixture
def add_member(app):
    """Insert a member with the given credentials straight through the store"""

    def _add(member_id='m-1', status='ACTIVE', credentials=None, **fields):
        defaults = {
            'first_name': 'Roberto',
            'last_name': 'Gómez',
            'role': 'Presidente',
            'join_date': date(2020, 1, 15),
            'photo_url': '',
        }
        defaults.update(fields)
        with app.app_context():
            member = Member(id=member_id, status=status, **defaults)
            member.credentials = [Credential(**c) for c in (credentials or [])]
            get_store().upsert_member(member)
        return member_id

    return _add


def credential_row(cred_id, token, issued, expires, status=CREDENTIAL_ACTIVE):
    return {
        'id': cred_id,
        'token': token,
        'issue_date': issued,
        'expiration_date': expires,
        'status': status,
    }


def png_data_url(size=(40, 20), color=(200, 30, 30)):
    buffer = BytesIO()
    Image.new('RGB', size, color).save(buffer, 'PNG')
    return 'data:image/png;base64,' + base64.b64encode(buffer.getvalue()).decode('ascii')
