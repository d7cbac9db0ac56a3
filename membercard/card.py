"""
ID Card Compositor
Renders the two faces of a member credential on top of the printed card templates
Front: photo, role, name, address and postal code
Back: verification QR, expiration, blood type and CURP
"""

import logging
import os
from functools import lru_cache
from io import BytesIO

import qrcode
import requests
from PIL import Image, ImageDraw, ImageFont

from membercard.errors import PhotoLoadError, TemplateLoadError
from membercard.uploads import decode_data_url, upload_path_for

logger = logging.getLogger(__name__)

# Layout canvas, matches the template artwork
CARD_WIDTH = 1012
CARD_HEIGHT = 638

# Physical export: 8.5 cm x 5.3 cm at 300 DPI
PRINT_DPI = 300
PRINT_WIDTH_CM = 8.5
PRINT_HEIGHT_CM = 5.3
PRINT_WIDTH = round(PRINT_WIDTH_CM / 2.54 * PRINT_DPI)
PRINT_HEIGHT = round(PRINT_HEIGHT_CM / 2.54 * PRINT_DPI)

SIDE_FRONT = 'front'
SIDE_BACK = 'back'
SIDES = (SIDE_FRONT, SIDE_BACK)

WHITE = (255, 255, 255)
BLACK = (0, 0, 0)
SLATE = (30, 41, 59)
PLACEHOLDER_FILL = (204, 204, 204)
PLACEHOLDER_TEXT = (102, 102, 102)

# Photo box on the front template
PHOTO_X = 36
PHOTO_Y = 276
PHOTO_W = 156
PHOTO_H = 156

# QR box on the back template
QR_X = 30
QR_Y = 220
QR_SIZE = 272
QR_RENDER_SIZE = 256
QR_CAPTION = "ESCANEAR PARA VALIDAR"


@lru_cache(maxsize=1)
def load_fonts():
    """Load fonts with proper fallbacks - bold variants where the layout asks for them"""
    slots = {
        'role': (True, 30),
        'name': (False, 22),
        'address': (False, 26),
        'postal': (False, 24),
        'expiry': (True, 34),
        'curp': (False, 28),
        'caption': (True, 14),
        'placeholder': (False, 14),
    }
    font_families = [
        ("arialbd.ttf", "arial.ttf"),  # Windows
        ("LiberationSans-Bold.ttf", "LiberationSans-Regular.ttf"),  # Linux
        ("DejaVuSans-Bold.ttf", "DejaVuSans.ttf"),  # Linux fallback
    ]

    for bold_name, regular_name in font_families:
        try:
            return {
                slot: ImageFont.truetype(bold_name if bold else regular_name, size)
                for slot, (bold, size) in slots.items()
            }
        except OSError:
            continue

    logger.info("Using default fonts as fallback")
    return {slot: ImageFont.load_default(size=size) for slot, (bold, size) in slots.items()}


def draw_text(draw, xy, text, font, fill, align='left'):
    """Draw text with its baseline at xy, left-aligned or centred on x"""
    if not text:
        return
    if isinstance(font, ImageFont.FreeTypeFont):
        draw.text(xy, text, font=font, fill=fill, anchor='ms' if align == 'center' else 'ls')
        return

    # Bitmap fonts have no anchors
    x, y = xy
    left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
    if align == 'center':
        x -= (right - left) / 2
    draw.text((x, y - bottom), text, font=font, fill=fill)


def cover_crop_box(src_width, src_height, box_width, box_height):
    """
    Source region that fills a box like CSS `object-fit: cover`.

    A relatively wider source keeps its full height and loses equal strips on the
    left and right; otherwise it keeps its full width and loses equal strips on
    top and bottom.

    Returns:
        tuple: (left, top, right, bottom) in source pixels
    """
    img_ratio = src_width / src_height
    box_ratio = box_width / box_height

    if img_ratio > box_ratio:
        crop_height = src_height
        crop_width = src_height * box_ratio
        offset_x = (src_width - crop_width) / 2
        offset_y = 0
    else:
        crop_width = src_width
        crop_height = src_width / box_ratio
        offset_x = 0
        offset_y = (src_height - crop_height) / 2

    return (offset_x, offset_y, offset_x + crop_width, offset_y + crop_height)


def fit_cover(image, size):
    """Scale and crop `image` to exactly `size` without distorting it"""
    box = cover_crop_box(image.width, image.height, size[0], size[1])
    return image.resize(size, Image.Resampling.LANCZOS, box=box)


def load_photo(photo_url, timeout=10, upload_folder=None):
    """
    Load a member photo from a data URL, an uploaded file or a remote URL

    Raises:
        PhotoLoadError: the photo could not be fetched or decoded
    """
    try:
        if photo_url.startswith('data:'):
            decoded = decode_data_url(photo_url)
            if decoded is None:
                raise PhotoLoadError("Malformed photo data URL")
            source = BytesIO(decoded[1])
        elif photo_url.startswith(('http://', 'https://')):
            response = requests.get(photo_url, timeout=timeout)
            response.raise_for_status()
            source = BytesIO(response.content)
        else:
            path = upload_path_for(photo_url, upload_folder)
            if path is None or not os.path.exists(path):
                raise PhotoLoadError(f"Photo not found: {photo_url[:50]}")
            source = path

        photo = Image.open(source)
        photo.load()
        return photo.convert('RGB')
    except requests.exceptions.RequestException as e:
        raise PhotoLoadError(f"Photo download failed: {e}") from e
    except (Image.DecompressionBombError, ValueError) as e:
        raise PhotoLoadError(f"Photo rejected: {e}") from e
    except OSError as e:
        if isinstance(e, PhotoLoadError):
            raise
        raise PhotoLoadError(f"Photo could not be decoded: {e}") from e


def load_template(template_path):
    """Card background scaled to the layout canvas, None if no template is configured"""
    if not template_path:
        return None
    try:
        template = Image.open(template_path)
        template.load()
    except OSError as e:
        raise TemplateLoadError(f"Template {template_path} could not be loaded: {e}") from e
    return template.convert('RGB').resize((CARD_WIDTH, CARD_HEIGHT), Image.Resampling.LANCZOS)


def render_qr(payload, size=QR_RENDER_SIZE):
    """Render the QR synchronously so the back face never waits on it"""
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_H,
        box_size=10,
        border=0,
    )
    qr.add_data(payload)
    qr.make(fit=True)

    qr_img = qr.make_image(fill_color="black", back_color="white").get_image().convert('RGB')
    return qr_img.resize((size, size), Image.Resampling.NEAREST)


def _new_canvas():
    return Image.new('RGB', (CARD_WIDTH, CARD_HEIGHT), WHITE)


def _draw_background(canvas, template_path, side):
    """Paste the template; False means the face cannot be drawn"""
    try:
        template = load_template(template_path)
    except TemplateLoadError as e:
        logger.error(f"Error drawing {side} canvas: {e}")
        return False
    if template is not None:
        canvas.paste(template, (0, 0))
    return True


def _draw_photo(canvas, draw, member, photo_loader, fonts):
    if not member.photo_url:
        return

    try:
        photo = photo_loader(member.photo_url)
        draw.rectangle([PHOTO_X, PHOTO_Y, PHOTO_X + PHOTO_W - 1, PHOTO_Y + PHOTO_H - 1], fill=WHITE)
        canvas.paste(fit_cover(photo, (PHOTO_W, PHOTO_H)), (PHOTO_X, PHOTO_Y))
    except PhotoLoadError as e:
        logger.warning(f"Could not load photo for member {member.id}, drawing placeholder: {e}")
        draw.rectangle([PHOTO_X, PHOTO_Y, PHOTO_X + PHOTO_W - 1, PHOTO_Y + PHOTO_H - 1], fill=PLACEHOLDER_FILL)
        draw_text(draw, (PHOTO_X + PHOTO_W // 2, PHOTO_Y + 120), "Error Foto",
                  fonts['placeholder'], PLACEHOLDER_TEXT, align='center')


def render_front(member, template_path=None, photo_loader=load_photo):
    """
    Generate the FRONT side of the card

    Args:
        member: Member object
        template_path: background artwork, optional
        photo_loader: callable(photo_url) -> PIL Image, raises PhotoLoadError

    Returns:
        Image: PIL Image at layout size
    """
    canvas = _new_canvas()
    if not _draw_background(canvas, template_path, SIDE_FRONT):
        return canvas

    draw = ImageDraw.Draw(canvas)
    fonts = load_fonts()

    _draw_photo(canvas, draw, member, photo_loader, fonts)

    # Role, centred above the photo
    draw_text(draw, (140, 220), (member.role or '').upper(), fonts['role'], BLACK, align='center')

    draw_text(draw, (240, 300), (member.first_name or '').upper(), fonts['name'], BLACK)
    draw_text(draw, (620, 300), (member.last_name or '').upper(), fonts['name'], BLACK)

    # Address block
    address_x = 240
    address_y = 405
    street_line = ' '.join(part for part in (member.street, member.house_number) if part)
    draw_text(draw, (address_x, address_y), street_line.upper(), fonts['address'], SLATE)
    draw_text(draw, (address_x, address_y + 32), (member.colony or '').upper(), fonts['address'], SLATE)

    # C.P. falls back to the member id
    postal = member.postal_code or member.id
    draw_text(draw, (address_x + 60, 500), (postal or '').upper(), fonts['postal'], SLATE)

    return canvas


def render_back(member, credential, qr_payload, template_path=None):
    """
    Generate the BACK side of the card

    Args:
        member: Member object
        credential: the credential this card represents
        qr_payload: verification URL encoded in the QR
        template_path: background artwork, optional

    Returns:
        Image: PIL Image at layout size
    """
    qr_img = render_qr(qr_payload)

    canvas = _new_canvas()
    if not _draw_background(canvas, template_path, SIDE_BACK):
        return canvas

    draw = ImageDraw.Draw(canvas)
    fonts = load_fonts()

    canvas.paste(qr_img.resize((QR_SIZE, QR_SIZE), Image.Resampling.NEAREST), (QR_X, QR_Y))
    draw_text(draw, (QR_X + QR_SIZE // 2, QR_Y + QR_SIZE + 20), QR_CAPTION, fonts['caption'], BLACK, align='center')

    # Expiration
    draw_text(draw, (537, 260), credential.expiration_date.isoformat(), fonts['expiry'], BLACK)

    if member.blood_type:
        draw_text(draw, (665, 370), member.blood_type, fonts['expiry'], BLACK)

    # CURP, or the emergency contact when there is none
    curp_value = member.curp or member.emergency_contact or member.id
    draw_text(draw, (468, 475), curp_value, fonts['curp'], BLACK)

    return canvas


def render_card(member, credential, qr_payload, side, front_template=None, back_template=None,
                photo_loader=load_photo):
    if side == SIDE_FRONT:
        return render_front(member, front_template, photo_loader)
    if side == SIDE_BACK:
        return render_back(member, credential, qr_payload, back_template)
    raise ValueError(f"Unknown card side: {side}")


def export_for_print(image):
    """Resample the composited face to print resolution; no re-compositing"""
    return image.resize((PRINT_WIDTH, PRINT_HEIGHT), Image.Resampling.LANCZOS)


def to_png_bytes(image):
    buffer = BytesIO()
    image.save(buffer, 'PNG', dpi=(PRINT_DPI, PRINT_DPI))
    return buffer.getvalue()


def card_filename(member_id, side):
    return f"{member_id}_{side}.png"
