from datetime import date
from functools import partial
from io import BytesIO

from flask import Blueprint, request, jsonify, current_app, send_file
from flask_login import login_required
from sqlalchemy import String
from sqlalchemy.exc import SQLAlchemyError

from membercard import card
from membercard.auth import check_admin_password, create_access_token
from membercard.errors import ValidationFailure, PersistenceFailure, CredentialInvariantError
from membercard.lifecycle import (
    issue_credential, get_active_credential, default_expiration, build_qr_payload, generate_id
)
from membercard.models import Member, MEMBER_FIELDS, MEMBER_STATUSES, MEMBER_ACTIVE
from membercard.store import get_store
from membercard.uploads import is_data_url, save_data_url_image, delete_uploaded_photo
from membercard.validation import resolve_public_lookup, NOT_FOUND

api_bp = Blueprint('api', __name__)

REQUIRED_FIELDS = ('firstName', 'lastName', 'role')
DATE_FIELDS = ('joinDate',)


# ============================================================================
# HELPERS
# ============================================================================

def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationFailure('Request body must be a JSON object')
    return data


def _not_found(message='Member not found'):
    return jsonify({'error': message}), 404


def parse_date(value, field):
    """Parse an ISO date (YYYY-MM-DD), raising ValidationFailure on bad input"""
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationFailure(f'{field} must be a date in YYYY-MM-DD format')


def parse_expiration(data):
    """Expiration for a newly issued credential; defaults to DEFAULT_CREDENTIAL_YEARS from today"""
    today = date.today()
    raw = data.get('expirationDate')
    if not raw:
        return default_expiration(today, current_app.config['DEFAULT_CREDENTIAL_YEARS'])

    expiration = parse_date(raw, 'expirationDate')
    if expiration < today:
        raise ValidationFailure('expirationDate cannot be earlier than the issue date')
    return expiration


def check_text(json_key, attr, value):
    """Text values must fit their column; overlong input is rejected before it reaches the database"""
    column_type = Member.__table__.columns[attr].type
    if not isinstance(column_type, String) or value is None:
        return
    if not isinstance(value, str):
        raise ValidationFailure(f'{json_key} must be a string')
    if column_type.length and len(value) > column_type.length:
        raise ValidationFailure(f'{json_key} must be at most {column_type.length} characters')


def apply_member_fields(member, data):
    """Copy submitted profile fields onto the member, validating as we go"""
    for json_key, attr in MEMBER_FIELDS.items():
        if json_key not in data:
            continue
        value = data[json_key]
        if isinstance(value, str):
            value = value.strip()

        if json_key in REQUIRED_FIELDS and not value:
            raise ValidationFailure(f'{json_key} is required')

        if json_key in DATE_FIELDS:
            value = parse_date(value, json_key) if value else date.today()
        elif json_key == 'status':
            value = (value or MEMBER_ACTIVE).upper()
            if value not in MEMBER_STATUSES:
                raise ValidationFailure(f"status must be one of {', '.join(MEMBER_STATUSES)}")
        elif json_key == 'curp' and value:
            value = value.upper()
        elif json_key == 'photoUrl':
            value = value or ''
        elif value == '':
            value = None

        check_text(json_key, attr, value)
        setattr(member, attr, value)


def save_member(store, member, previous_photo=None):
    """
    Commit the member, keeping stored photo files in step with the database.

    An embedded photo is written before the commit and removed again if the
    commit fails; the file it replaces is only removed once the commit succeeds.
    """
    saved = None
    if is_data_url(member.photo_url):
        saved = save_data_url_image(member.photo_url, member.id)
        if saved:
            member.photo_url = saved

    try:
        store.upsert_member(member)
    except PersistenceFailure:
        delete_uploaded_photo(saved)
        raise

    if previous_photo and previous_photo != member.photo_url:
        delete_uploaded_photo(previous_photo)


# ============================================================================
# ERROR HANDLERS
# ============================================================================

@api_bp.errorhandler(ValidationFailure)
def handle_validation_failure(e):
    return jsonify({'error': str(e)}), 400


@api_bp.errorhandler(PersistenceFailure)
def handle_persistence_failure(e):
    return jsonify({'error': 'Could not save changes'}), 500


@api_bp.errorhandler(CredentialInvariantError)
def handle_invariant_violation(e):
    current_app.logger.error(f"Credential invariant violated: {e}")
    return jsonify({'error': 'Member has more than one active credential'}), 500


# ============================================================================
# HEALTH & LOGIN
# ============================================================================

@api_bp.route('/health')
def health():
    try:
        get_store().ping()
    except SQLAlchemyError as e:
        current_app.logger.error(f"Health check failed: {e}")
        return jsonify({'status': 'error', 'db': 'disconnected'}), 500
    return jsonify({'status': 'ok', 'db': 'connected'})


@api_bp.route('/login', methods=['POST'])
def login():
    password = _json_body().get('password')
    if not check_admin_password(password):
        current_app.logger.warning(f"Failed admin login from {request.remote_addr}")
        return jsonify({'error': 'Invalid credentials'}), 401
    return jsonify({'token': create_access_token()})


# ============================================================================
# MEMBERS
# ============================================================================

@api_bp.route('/members')
@login_required
def list_members():
    """Optional filters: `q` matches name, id or colony; `status` is ACTIVE, INACTIVE or ALL"""
    status = (request.args.get('status') or 'ALL').upper()
    if status != 'ALL' and status not in MEMBER_STATUSES:
        raise ValidationFailure(f"status must be ALL or one of {', '.join(MEMBER_STATUSES)}")

    members = get_store().list_members(
        search=request.args.get('q'),
        status=None if status == 'ALL' else status,
    )
    return jsonify([m.to_dict() for m in members])


@api_bp.route('/members/<member_id>')
@login_required
def get_member(member_id):
    member = get_store().get_member(member_id)
    if member is None:
        return _not_found()
    return jsonify(member.to_dict())


@api_bp.route('/members', methods=['POST'])
@login_required
def create_member():
    data = _json_body()
    store = get_store()

    missing = [field for field in REQUIRED_FIELDS if not str(data.get(field) or '').strip()]
    if missing:
        raise ValidationFailure(f"Missing required fields: {', '.join(missing)}")

    member_id = str(data.get('id') or '').strip() or generate_id()
    check_text('id', 'id', member_id)
    if store.get_member(member_id) is not None:
        raise ValidationFailure(f'Member {member_id} already exists')

    member = Member(id=member_id, status=MEMBER_ACTIVE, join_date=date.today(), photo_url='')
    apply_member_fields(member, data)
    expiration = parse_expiration(data)

    # First credential goes in with the member, in the same commit
    member.credentials, _ = issue_credential([], expiration)
    save_member(store, member)

    current_app.logger.info(f"Created member {member.id} ({member.full_name})")
    return jsonify(member.to_dict()), 201


@api_bp.route('/members/<member_id>', methods=['PUT'])
@login_required
def update_member(member_id):
    store = get_store()
    member = store.get_member(member_id)
    if member is None:
        return _not_found()

    previous_photo = member.photo_url
    apply_member_fields(member, _json_body())
    save_member(store, member, previous_photo)

    return jsonify(member.to_dict())


@api_bp.route('/members/<member_id>', methods=['DELETE'])
@login_required
def delete_member(member_id):
    store = get_store()
    member = store.get_member(member_id)
    if member is None:
        return _not_found()

    photo_url = member.photo_url
    store.delete_member(member_id)
    delete_uploaded_photo(photo_url)

    current_app.logger.info(f"Deleted member {member_id}")
    return '', 204


# ============================================================================
# CREDENTIALS
# ============================================================================

@api_bp.route('/members/<member_id>/credentials', methods=['POST'])
@login_required
def renew_credential(member_id):
    """Issue a replacement credential; the previous active one becomes REVOKED"""
    expiration = parse_expiration(_json_body())

    member, credential = get_store().issue_credential(member_id, expiration)
    if member is None:
        return _not_found()

    return jsonify(member.to_dict()), 201


@api_bp.route('/members/<member_id>/preview')
@login_required
def preview_url(member_id):
    """Verification URL of the active credential, the same one printed in the card QR"""
    member = get_store().get_member(member_id)
    if member is None:
        return _not_found()

    credential = get_active_credential(member.credentials)
    if credential is None:
        return _not_found('Member has no active credential')

    return jsonify({
        'url': build_qr_payload(current_app.config['PUBLIC_BASE_URL'], member.id, credential.token),
        'credential': credential.to_dict(),
    })


@api_bp.route('/members/<member_id>/card/<side>')
@login_required
def download_card(member_id, side):
    """Print-resolution PNG of one card face"""
    if side not in card.SIDES:
        return _not_found('Unknown card side')

    member = get_store().get_member(member_id)
    if member is None:
        return _not_found()

    token = request.args.get('token')
    if token:
        credential = member.find_credential_by_token(token)
    else:
        credential = get_active_credential(member.credentials)
    if credential is None:
        return _not_found('Credential not found')

    config = current_app.config
    qr_payload = build_qr_payload(config['PUBLIC_BASE_URL'], member.id, credential.token)
    photo_loader = partial(card.load_photo, timeout=config['PHOTO_FETCH_TIMEOUT'],
                           upload_folder=config['UPLOAD_FOLDER'])

    face = card.render_card(
        member, credential, qr_payload, side,
        front_template=config['CARD_FRONT_TEMPLATE'],
        back_template=config['CARD_BACK_TEMPLATE'],
        photo_loader=photo_loader,
    )
    png = card.to_png_bytes(card.export_for_print(face))

    return send_file(
        BytesIO(png),
        mimetype='image/png',
        as_attachment=True,
        download_name=card.card_filename(member.id, side),
    )


# ============================================================================
# PUBLIC QR VALIDATION
# ============================================================================

@api_bp.route('/public/members/<member_id>')
def public_member(member_id):
    """Open endpoint hit by scanned QR codes"""
    result = resolve_public_lookup(get_store(), member_id, request.args.get('token'))
    status_code = 404 if result.error_type == NOT_FOUND else 200
    return jsonify(result.to_dict()), status_code
