import os
from datetime import date, timedelta
from io import BytesIO

import pytest
from PIL import Image
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from conftest import credential_row, png_data_url, PUBLIC_BASE_URL
from membercard.auth import create_access_token
from membercard.lifecycle import default_expiration
from membercard.store import MemberStore

FAR_FUTURE = date(2099, 12, 31)


def add_card_holder(add_member, **fields):
    """Member with one revoked and one active credential"""
    return add_member(credentials=[
        credential_row('old', 'tok-old', date(2023, 1, 1), date(2099, 1, 1), status='REVOKED'),
        credential_row('cur', 'tok-cur', date(2024, 6, 1), FAR_FUTURE),
    ], **fields)


class TestAuth:
    def test_login(self, client):
        response = client.post('/api/login', json={'password': 'test-password'})
        assert response.status_code == 200
        assert response.get_json()['token']

    def test_login_wrong_password(self, client):
        response = client.post('/api/login', json={'password': 'nope'})
        assert response.status_code == 401
        assert 'token' not in response.get_json()

    def test_missing_token(self, client):
        response = client.get('/api/members')
        assert response.status_code == 401
        assert response.get_json() == {'error': 'Unauthorized'}

    def test_malformed_token(self, client):
        for header in ('Bearer not-a-token', 'Basic abc', 'Bearer'):
            response = client.get('/api/members', headers={'Authorization': header})
            assert response.status_code == 401

    def test_expired_token(self, app, client):
        with app.app_context():
            token = create_access_token(expires_delta=timedelta(seconds=-1))
        response = client.get('/api/members', headers={'Authorization': f'Bearer {token}'})
        assert response.status_code == 401

    def test_token_signed_with_other_key(self, app, client):
        with app.app_context():
            app.config['SECRET_KEY'] = 'someone-else'
            token = create_access_token()
            app.config['SECRET_KEY'] = 'test-secret'
        response = client.get('/api/members', headers={'Authorization': f'Bearer {token}'})
        assert response.status_code == 401

    def test_health_is_open(self, client):
        response = client.get('/api/health')
        assert response.status_code == 200
        assert response.get_json() == {'status': 'ok', 'db': 'connected'}


class TestMembers:
    def test_create_issues_first_credential(self, client, auth_headers):
        response = client.post('/api/members', headers=auth_headers, json={
            'firstName': ' Juan ',
            'lastName': 'Pérez',
            'role': 'Vocal',
            'joinDate': '2022-05-20',
            'curp': 'pexj900101hdfrrn02',
            'bloodType': 'A+',
        })
        assert response.status_code == 201

        data = response.get_json()
        assert data['id']
        assert data['firstName'] == 'Juan'
        assert data['curp'] == 'PEXJ900101HDFRRN02'
        assert data['joinDate'] == '2022-05-20'
        assert data['status'] == 'ACTIVE'
        assert len(data['credentials']) == 1

        credential = data['credentials'][0]
        assert credential['status'] == 'ACTIVE'
        assert credential['issueDate'] == date.today().isoformat()
        assert credential['expirationDate'] == default_expiration(date.today()).isoformat()
        assert len(credential['token']) == 32

    def test_create_with_expiration_and_id(self, client, auth_headers):
        response = client.post('/api/members', headers=auth_headers, json={
            'id': 'custom-1', 'firstName': 'Ana', 'lastName': 'López', 'role': 'Secretaria',
            'expirationDate': '2030-11-08',
        })
        assert response.status_code == 201
        data = response.get_json()
        assert data['id'] == 'custom-1'
        assert data['credentials'][0]['expirationDate'] == '2030-11-08'

        listed = client.get('/api/members', headers=auth_headers).get_json()
        assert [m['id'] for m in listed] == ['custom-1']

    def test_create_rejects_duplicate_id(self, client, auth_headers, add_member):
        add_member('m-1')
        response = client.post('/api/members', headers=auth_headers, json={
            'id': 'm-1', 'firstName': 'Ana', 'lastName': 'López', 'role': 'Secretaria',
        })
        assert response.status_code == 400

    def test_create_validation(self, client, auth_headers):
        base = {'firstName': 'Ana', 'lastName': 'López', 'role': 'Secretaria'}
        bad_bodies = [
            {'lastName': 'López', 'role': 'Secretaria'},
            dict(base, firstName='   '),
            dict(base, joinDate='20-05-2022'),
            dict(base, status='SUSPENDED'),
            dict(base, expirationDate='tomorrow'),
            dict(base, expirationDate=(date.today() - timedelta(days=1)).isoformat()),
        ]
        for body in bad_bodies:
            response = client.post('/api/members', headers=auth_headers, json=body)
            assert response.status_code == 400, body
            assert response.get_json()['error']

        assert client.get('/api/members', headers=auth_headers).get_json() == []

    def test_get_member(self, client, auth_headers, add_member):
        add_card_holder(add_member)

        data = client.get('/api/members/m-1', headers=auth_headers).get_json()
        assert data['lastName'] == 'Gómez'
        assert [c['id'] for c in data['credentials']] == ['cur', 'old']

        assert client.get('/api/members/nope', headers=auth_headers).status_code == 404

    def test_update_profile_keeps_credentials(self, client, auth_headers, add_member):
        add_card_holder(add_member)

        response = client.put('/api/members/m-1', headers=auth_headers, json={
            'role': 'Tesorero',
            'status': 'inactive',
            'colony': '',
            'credentials': [],
        })
        assert response.status_code == 200

        data = response.get_json()
        assert data['role'] == 'Tesorero'
        assert data['status'] == 'INACTIVE'
        assert data['colony'] is None
        assert data['firstName'] == 'Roberto'
        assert [(c['id'], c['status']) for c in data['credentials']] == [('cur', 'ACTIVE'), ('old', 'REVOKED')]

    def test_update_rejects_blank_required_field(self, client, auth_headers, add_member):
        add_member()
        response = client.put('/api/members/m-1', headers=auth_headers, json={'lastName': ''})
        assert response.status_code == 400

    def test_update_missing_member(self, client, auth_headers):
        assert client.put('/api/members/nope', headers=auth_headers, json={'role': 'x'}).status_code == 404

    def test_delete_member(self, client, auth_headers, add_member):
        add_card_holder(add_member)

        response = client.delete('/api/members/m-1', headers=auth_headers)
        assert response.status_code == 204
        assert client.get('/api/members/m-1', headers=auth_headers).status_code == 404
        assert client.delete('/api/members/m-1', headers=auth_headers).status_code == 404

        # History is gone with the member
        response = client.get('/api/public/members/m-1?token=tok-cur')
        assert response.status_code == 404

    def test_photo_data_url_is_stored_as_upload(self, app, client, auth_headers):
        response = client.post('/api/members', headers=auth_headers, json={
            'firstName': 'Ana', 'lastName': 'López', 'role': 'Secretaria',
            'photoUrl': png_data_url((24, 24)),
        })
        photo_url = response.get_json()['photoUrl']
        assert photo_url.startswith('/uploads/')

        served = client.get(photo_url)
        assert served.status_code == 200
        assert Image.open(BytesIO(served.data)).size == (24, 24)
        served.close()

    def test_replacing_photo_removes_old_upload(self, client, auth_headers):
        member = client.post('/api/members', headers=auth_headers, json={
            'firstName': 'Ana', 'lastName': 'López', 'role': 'Secretaria',
            'photoUrl': png_data_url((24, 24)),
        }).get_json()
        old_url = member['photoUrl']

        updated = client.put(f"/api/members/{member['id']}", headers=auth_headers,
                             json={'photoUrl': 'https://example.org/ana.jpg'}).get_json()

        assert updated['photoUrl'] == 'https://example.org/ana.jpg'
        assert client.get(old_url).status_code == 404

    def test_failed_save_keeps_existing_photo(self, app, client, auth_headers, monkeypatch):
        member = client.post('/api/members', headers=auth_headers, json={
            'firstName': 'Ana', 'lastName': 'López', 'role': 'Secretaria',
            'photoUrl': png_data_url((24, 24)),
        }).get_json()
        old_url = member['photoUrl']
        upload_folder = app.config['UPLOAD_FOLDER']
        assert os.listdir(upload_folder) == [old_url.rsplit('/', 1)[1]]

        def failing_commit(session):
            raise OperationalError('COMMIT', {}, Exception('database is locked'))

        monkeypatch.setattr(Session, 'commit', failing_commit)
        response = client.put(f"/api/members/{member['id']}", headers=auth_headers,
                              json={'photoUrl': png_data_url((32, 32), (10, 10, 200))})
        monkeypatch.undo()

        assert response.status_code == 500
        assert response.get_json() == {'error': 'Could not save changes'}

        # Record and files still agree: old photo kept, new one discarded
        assert client.get(f"/api/members/{member['id']}", headers=auth_headers).get_json()['photoUrl'] == old_url
        assert os.listdir(upload_folder) == [old_url.rsplit('/', 1)[1]]
        assert client.get(old_url).status_code == 200

    def test_rejects_values_longer_than_their_column(self, client, auth_headers, add_member):
        add_member()
        for field, value in (('curp', 'X' * 19), ('postalCode', '1' * 11), ('emergencyContact', '5' * 31)):
            response = client.put('/api/members/m-1', headers=auth_headers, json={field: value})
            assert response.status_code == 400, field
            assert 'at most' in response.get_json()['error']

        response = client.post('/api/members', headers=auth_headers, json={
            'id': 'x' * 37, 'firstName': 'Ana', 'lastName': 'López', 'role': 'Secretaria',
        })
        assert response.status_code == 400

    def test_rejects_non_string_text(self, client, auth_headers, add_member):
        add_member()
        response = client.put('/api/members/m-1', headers=auth_headers, json={'firstName': 42})
        assert response.status_code == 400

    def test_rejects_non_object_body(self, client, auth_headers, add_member):
        add_member()
        assert client.post('/api/members', headers=auth_headers, json=[1]).status_code == 400
        assert client.put('/api/members/m-1', headers=auth_headers, json=['x']).status_code == 400
        assert client.post('/api/login', json='test-password').status_code == 400


class TestMemberSearch:
    @pytest.fixture(autouse=True)
    def members(self, add_member):
        add_member('m-1', first_name='Roberto', last_name='Gomez', colony='Centro')
        add_member('m-2', first_name='Maria', last_name='Fernandez', colony='Jardines', status='INACTIVE')
        add_member('abc-3', first_name='Juan', last_name='Perez', colony='Centro Norte')

    def ids(self, client, auth_headers, query=''):
        response = client.get(f'/api/members{query}', headers=auth_headers)
        assert response.status_code == 200
        return [m['id'] for m in response.get_json()]

    def test_no_filters(self, client, auth_headers):
        assert self.ids(client, auth_headers) == ['m-2', 'm-1', 'abc-3']

    def test_search_by_name_is_case_insensitive(self, client, auth_headers):
        assert self.ids(client, auth_headers, '?q=ROBERTO') == ['m-1']
        assert self.ids(client, auth_headers, '?q=fernan') == ['m-2']

    def test_search_by_id_and_colony(self, client, auth_headers):
        assert self.ids(client, auth_headers, '?q=abc') == ['abc-3']
        assert self.ids(client, auth_headers, '?q=centro') == ['m-1', 'abc-3']

    def test_status_filter(self, client, auth_headers):
        assert self.ids(client, auth_headers, '?status=inactive') == ['m-2']
        assert self.ids(client, auth_headers, '?status=ACTIVE') == ['m-1', 'abc-3']
        assert self.ids(client, auth_headers, '?status=ALL') == ['m-2', 'm-1', 'abc-3']

    def test_search_and_status_combined(self, client, auth_headers):
        assert self.ids(client, auth_headers, '?q=centro&status=ACTIVE') == ['m-1', 'abc-3']
        assert self.ids(client, auth_headers, '?q=jardines&status=ACTIVE') == []

    def test_unknown_status(self, client, auth_headers):
        assert client.get('/api/members?status=SUSPENDED', headers=auth_headers).status_code == 400


class TestCredentials:
    def test_renewal_revokes_previous(self, client, auth_headers, add_member):
        add_card_holder(add_member)

        response = client.post('/api/members/m-1/credentials', headers=auth_headers,
                               json={'expirationDate': '2098-06-30'})
        assert response.status_code == 201

        credentials = response.get_json()['credentials']
        assert len(credentials) == 3
        newest = credentials[0]
        assert newest['status'] == 'ACTIVE'
        assert newest['issueDate'] == date.today().isoformat()
        assert newest['expirationDate'] == '2098-06-30'

        statuses = {c['id']: c['status'] for c in credentials[1:]}
        assert statuses == {'cur': 'REVOKED', 'old': 'REVOKED'}

        # The card that was just replaced now reads as replaced when scanned
        scanned = client.get('/api/public/members/m-1?token=tok-cur').get_json()
        assert scanned['displayStatus'] == 'REPLACED'

        scanned = client.get(f"/api/public/members/m-1?token={newest['token']}").get_json()
        assert scanned['displayStatus'] == 'VALID'

    def test_renewal_defaults_expiration(self, client, auth_headers, add_member):
        add_member()
        credentials = client.post('/api/members/m-1/credentials', headers=auth_headers).get_json()['credentials']
        assert credentials[0]['expirationDate'] == default_expiration(date.today()).isoformat()

    def test_renewal_rejects_past_expiration(self, client, auth_headers, add_member):
        add_card_holder(add_member)
        response = client.post('/api/members/m-1/credentials', headers=auth_headers,
                               json={'expirationDate': '2001-01-01'})
        assert response.status_code == 400

        data = client.get('/api/members/m-1', headers=auth_headers).get_json()
        assert len(data['credentials']) == 2

    def test_renewal_missing_member(self, client, auth_headers):
        response = client.post('/api/members/nope/credentials', headers=auth_headers, json={})
        assert response.status_code == 404

    def test_preview_url(self, client, auth_headers, add_member):
        add_card_holder(add_member)

        data = client.get('/api/members/m-1/preview', headers=auth_headers).get_json()
        assert data['url'] == f'{PUBLIC_BASE_URL}/member/m-1?token=tok-cur'
        assert data['credential']['id'] == 'cur'

    def test_preview_without_active_credential(self, client, auth_headers, add_member):
        add_member()
        assert client.get('/api/members/m-1/preview', headers=auth_headers).status_code == 404

    def test_two_active_credentials_is_a_server_error(self, client, auth_headers, add_member):
        add_member(credentials=[
            credential_row('a', 'tok-a', date(2024, 1, 1), FAR_FUTURE),
            credential_row('b', 'tok-b', date(2023, 1, 1), FAR_FUTURE),
        ])
        response = client.get('/api/members/m-1/preview', headers=auth_headers)
        assert response.status_code == 500


class TestCardDownload:
    def test_front_png_at_print_size(self, client, auth_headers, add_member):
        add_card_holder(add_member)

        response = client.get('/api/members/m-1/card/front', headers=auth_headers)
        assert response.status_code == 200
        assert response.mimetype == 'image/png'
        assert 'm-1_front.png' in response.headers['Content-Disposition']
        assert Image.open(BytesIO(response.data)).size == (1004, 626)

    def test_back_for_specific_credential(self, client, auth_headers, add_member):
        add_card_holder(add_member)

        response = client.get('/api/members/m-1/card/back?token=tok-old', headers=auth_headers)
        assert response.status_code == 200
        assert 'm-1_back.png' in response.headers['Content-Disposition']

    def test_front_with_unreachable_photo_still_renders(self, client, auth_headers, add_member):
        add_card_holder(add_member, photo_url='/uploads/gone.png')

        response = client.get('/api/members/m-1/card/front', headers=auth_headers)
        assert response.status_code == 200

    def test_unknown_side_or_credential(self, client, auth_headers, add_member):
        add_card_holder(add_member)

        assert client.get('/api/members/m-1/card/edge', headers=auth_headers).status_code == 404
        assert client.get('/api/members/m-1/card/back?token=bogus', headers=auth_headers).status_code == 404
        assert client.get('/api/members/nope/card/front', headers=auth_headers).status_code == 404

    def test_requires_login(self, client, add_member):
        add_card_holder(add_member)
        assert client.get('/api/members/m-1/card/front').status_code == 401


class TestPublicLookup:
    def test_unknown_member(self, client):
        response = client.get('/api/public/members/nope?token=abc')
        assert response.status_code == 404
        assert response.get_json() == {'member': None, 'credential': None, 'errorType': 'NOT_FOUND'}

    def test_missing_or_unknown_token(self, client, add_member):
        add_card_holder(add_member)

        for url in ('/api/public/members/m-1', '/api/public/members/m-1?token=bogus'):
            response = client.get(url)
            assert response.status_code == 200
            data = response.get_json()
            assert data['errorType'] == 'INVALID_QR'
            assert data['member']['id'] == 'm-1'
            assert data['credential'] is None

    def test_valid_token(self, client, add_member):
        add_card_holder(add_member)

        data = client.get('/api/public/members/m-1?token=tok-cur').get_json()
        assert data['errorType'] is None
        assert data['credential']['id'] == 'cur'
        assert data['displayStatus'] == 'VALID'
        assert data['displayLabel'] == 'VIGENTE'

    def test_historical_token_is_replaced(self, client, add_member):
        add_card_holder(add_member)

        data = client.get('/api/public/members/m-1?token=tok-old').get_json()
        assert data['credential']['id'] == 'old'
        assert data['displayStatus'] == 'REPLACED'

    def test_inactive_member(self, client, add_member):
        add_card_holder(add_member, status='INACTIVE')

        data = client.get('/api/public/members/m-1?token=tok-cur').get_json()
        assert data['displayStatus'] == 'INACTIVE_MEMBER'
        assert data['displayLabel'] == 'MIEMBRO INACTIVO'

    def test_expired_by_date(self, client, add_member):
        add_member(credentials=[credential_row('a', 'tok-a', date(2020, 1, 1), date(2021, 1, 1))])

        data = client.get('/api/public/members/m-1?token=tok-a').get_json()
        assert data['displayStatus'] == 'EXPIRED'
        assert data['displayLabel'] == 'VENCIDA'


class TestVerificationPage:
    def test_valid_card(self, client, add_member):
        add_card_holder(add_member)

        response = client.get('/member/m-1?token=tok-cur')
        assert response.status_code == 200
        page = response.get_data(as_text=True)
        assert 'VIGENTE' in page
        assert 'Roberto Gómez' in page
        assert FAR_FUTURE.isoformat() in page

    def test_replaced_card(self, client, add_member):
        add_card_holder(add_member)
        assert 'REEMPLAZADA' in client.get('/member/m-1?token=tok-old').get_data(as_text=True)

    def test_unknown_qr(self, client, add_member):
        add_card_holder(add_member)

        response = client.get('/member/m-1?token=bogus')
        assert response.status_code == 200
        assert 'QR Desconocido' in response.get_data(as_text=True)

    def test_unknown_member(self, client):
        response = client.get('/member/nope?token=abc')
        assert response.status_code == 404
        assert 'Miembro No Encontrado' in response.get_data(as_text=True)

    def test_database_outage_is_not_reported_as_missing_member(self, client, add_member, monkeypatch):
        add_card_holder(add_member)

        def broken_lookup(store, member_id):
            raise OperationalError('SELECT', {}, Exception('connection refused'))

        monkeypatch.setattr(MemberStore, 'get_member', broken_lookup)
        response = client.get('/member/m-1?token=tok-cur')

        assert response.status_code == 503
        page = response.get_data(as_text=True)
        assert 'Servicio No Disponible' in page
        assert 'Miembro No Encontrado' not in page
