"""
Public routes for verifying scanned member cards
Anyone can scan the QR code and check the credential it carries
"""

from datetime import date

from flask import Blueprint, render_template, request, current_app, send_from_directory
from sqlalchemy.exc import SQLAlchemyError

from membercard.lifecycle import display_label
from membercard.store import get_store
from membercard.validation import resolve_public_lookup, NOT_FOUND

public_bp = Blueprint('public', __name__)

# Page state when the records cannot be read at all
UNAVAILABLE = 'UNAVAILABLE'


@public_bp.route('/member/<member_id>')
def verify_member(member_id):
    """
    Public verification page opened from the card QR
    Renders one of: not found, unknown QR, the credential status, or unavailable
    """
    try:
        result = resolve_public_lookup(get_store(), member_id, request.args.get('token'))
    except SQLAlchemyError as e:
        current_app.logger.error(f"Error loading member {member_id} for verification: {e}")
        return render_template('verification.html', member=None, credential=None,
                               error_type=UNAVAILABLE, status=None, status_label=None), 503

    status = result.status(date.today())
    status_code = 404 if result.error_type == NOT_FOUND else 200

    return render_template('verification.html',
                           member=result.member,
                           credential=result.credential,
                           error_type=result.error_type,
                           status=status,
                           status_label=display_label(status) if status else None), status_code


@public_bp.route('/uploads/<path:filename>')
def uploaded_file(filename):
    return send_from_directory(current_app.config['UPLOAD_FOLDER'], filename)
