"""
Photo storage for member pictures submitted as base64 data URLs
"""

import base64
import binascii
import os
import re
from datetime import datetime

from flask import current_app
from werkzeug.utils import secure_filename

UPLOAD_URL_PREFIX = '/uploads/'
ALLOWED_EXTENSIONS = ('png', 'jpg', 'jpeg', 'gif', 'webp')

DATA_URL_RE = re.compile(r'^data:(image/[\w.+-]+);base64,(.+)$', re.DOTALL)


def is_data_url(value):
    return bool(value) and value.startswith('data:image')


def decode_data_url(data_url):
    """Return (extension, bytes) for an image data URL, or None if it is not one"""
    match = DATA_URL_RE.match(data_url or '')
    if not match:
        return None

    ext = match.group(1).split('/')[1].lower()
    if ext == 'jpeg':
        ext = 'jpg'
    try:
        payload = base64.b64decode(match.group(2), validate=False)
    except (binascii.Error, ValueError):
        return None
    return ext, payload


def save_data_url_image(data_url, member_id):
    """
    Save an embedded image to the upload folder

    Returns:
        str: public path (/uploads/<file>) or None if the data URL is unusable
    """
    decoded = decode_data_url(data_url)
    if decoded is None:
        current_app.logger.warning(f"Discarding malformed photo data URL for member {member_id}")
        return None

    ext, payload = decoded
    if ext not in ALLOWED_EXTENSIONS:
        current_app.logger.warning(f"Unsupported photo type '{ext}' for member {member_id}")
        return None

    timestamp = str(int(datetime.utcnow().timestamp() * 1000))
    filename = secure_filename(f"{member_id}-{timestamp}.{ext}")
    upload_path = os.path.join(current_app.config['UPLOAD_FOLDER'], filename)

    try:
        with open(upload_path, 'wb') as fh:
            fh.write(payload)
    except OSError as e:
        current_app.logger.error(f"Error saving photo for member {member_id}: {e}")
        return None

    return f"{UPLOAD_URL_PREFIX}{filename}"


def upload_path_for(photo_url, upload_folder=None):
    """Filesystem path of a stored photo, or None if the URL is not one of ours"""
    if not photo_url or not photo_url.startswith(UPLOAD_URL_PREFIX):
        return None
    filename = secure_filename(photo_url[len(UPLOAD_URL_PREFIX):])
    if not filename:
        return None
    return os.path.join(upload_folder or current_app.config['UPLOAD_FOLDER'], filename)


def delete_uploaded_photo(photo_url):
    path = upload_path_for(photo_url)
    if path and os.path.exists(path):
        try:
            os.remove(path)
        except OSError as e:
            current_app.logger.warning(f"Could not delete photo {path}: {e}")
