"""
Alpha-Channel QR Steganography

Hides a short text payload in a photograph by drawing it as a QR code into
the alpha channel. Pixels under the QR's background cells get their colour
rewritten and their alpha dropped to ALPHA, so that over a white page the
photo looks unchanged. Over any other backdrop the QR pattern shows up.

Pipeline:
    carrier bytes -> decode_carrier -> RGBA image
    payload + size -> QRMaskGenerator -> RGBA mask
    carrier + mask + (left, top) -> AlphaCompositor -> composite
    composite -> encode_png -> PNG bytes
"""

import base64
import io
import string
import sys
from dataclasses import dataclass
from datetime import datetime

import numpy as np
import qrcode
from PIL import Image, UnidentifiedImageError
from qrcode.exceptions import DataOverflowError

# Blend settings
ALPHA = 150             # output alpha of background cells
THRESHOLD = 200         # mask alpha above this is a QR module
OVERFLOW_POLICY = 'clamp'  # 'clamp' or 'wrap'

# Size limits
DEFAULT_MASK_SIZE = 100
MIN_CARRIER_SIZE = 40
MIN_MASK_SIZE = 30
QR_BORDER = 1  # quiet zone, in modules

_ECC_LEVELS = {
    'L': qrcode.constants.ERROR_CORRECT_L,
    'M': qrcode.constants.ERROR_CORRECT_M,
    'Q': qrcode.constants.ERROR_CORRECT_Q,
    'H': qrcode.constants.ERROR_CORRECT_H,
}

OVERFLOW_POLICIES = ('clamp', 'wrap')


class AlphaQRError(ValueError):
    """Base class for errors raised while hiding a message."""


class DecodeError(AlphaQRError):
    """Input bytes are not a readable image."""


class EncodingCapacityError(AlphaQRError):
    """Payload does not fit the QR version or the requested mask size."""


class DimensionError(AlphaQRError):
    """Carrier or mask size is outside the usable range."""


@dataclass(frozen=True)
class HideRequest:
    carrier_bytes: bytes
    payload: str
    size: int = DEFAULT_MASK_SIZE
    left: int = 0
    top: int = 0


@dataclass(frozen=True)
class HideResult:
    png: bytes
    width: int
    height: int
    mask_size: int
    left: int
    top: int
    filename: str


class QRMaskGenerator:
    """
    Renders a payload as a square RGBA QR image.

    Modules are opaque black, background cells are transparent white. The
    image is exactly the requested size; when that is not a multiple of
    the module count, modules differ in width by one pixel.
    """

    def __init__(self, border=QR_BORDER, error_correction='M', version=None):
        """
        Args:
            border: Quiet zone width in modules
            error_correction: One of 'L', 'M', 'Q', 'H'
            version: Fixed QR version (1-40), or None to pick the smallest fit
        """
        level = str(error_correction).upper()
        if level not in _ECC_LEVELS:
            raise ValueError(f"Unknown error correction level: {error_correction}")
        self.border = border
        self.error_correction = level
        self.version = version

    def matrix(self, payload):
        """Boolean module matrix including the quiet zone. True = module."""
        if not payload:
            raise ValueError("Empty message")

        qr = qrcode.QRCode(
            version=self.version,
            error_correction=_ECC_LEVELS[self.error_correction],
            box_size=1,
            border=self.border,
        )
        qr.add_data(payload)
        try:
            # A fixed version is a hard capacity limit, don't let it grow
            qr.make(fit=self.version is None)
        except (DataOverflowError, ValueError) as e:
            # Newer qrcode releases report "version 41" as a plain ValueError
            raise EncodingCapacityError(
                f"Message too long for QR code ({len(payload)} chars): {e}"
            ) from e

        return np.array(qr.get_matrix(), dtype=bool)

    def generate(self, payload, size):
        """
        Generate the mask image for a payload.

        Args:
            payload: Text to encode (non-empty)
            size: Target side length in pixels

        Returns:
            RGBA PIL image of exactly size x size pixels
        """
        if size < 1:
            raise DimensionError(f"Mask size must be positive, got {size}")

        modules = self.matrix(payload)
        count = modules.shape[0]
        if count > size:
            raise EncodingCapacityError(
                f"QR code needs {count} modules, does not fit in {size}px. "
                f"Use a larger size or a shorter message."
            )

        # Render at ceil(size / count) px per module, then scale to fit
        box = -(-size // count)
        cells = np.kron(modules, np.ones((box, box), dtype=bool))
        pixels = np.empty(cells.shape + (4,), dtype=np.uint8)
        pixels[..., :3] = np.where(cells, 0, 255)[..., None]
        pixels[..., 3] = np.where(cells, 255, 0)

        qr_img = Image.fromarray(pixels)
        if qr_img.width != size:
            qr_img = qr_img.resize((size, size), Image.NEAREST)
        return qr_img


class PlacementValidator:
    """
    Keeps the mask placeable: carrier large enough, mask size within the
    carrier, rectangle inside the carrier for user-driven placement.
    """

    def __init__(self, min_carrier=MIN_CARRIER_SIZE, min_mask=MIN_MASK_SIZE):
        self.min_carrier = min_carrier
        self.min_mask = min_mask

    def check_carrier(self, width, height):
        if width < self.min_carrier or height < self.min_carrier:
            raise DimensionError(
                f"Image too small: {width}x{height}, "
                f"need at least {self.min_carrier}x{self.min_carrier}"
            )

    def mask_size(self, width, height, size):
        """Effective mask size: min(size, width, height)."""
        if size < self.min_mask:
            raise DimensionError(f"QR size too small: {size}px, minimum is {self.min_mask}px")
        return min(size, width, height)

    def clamp(self, width, height, mask_width, mask_height, left, top):
        """Clamp (left, top) so the mask rectangle stays inside the carrier."""
        left = max(0, min(left, width - mask_width))
        top = max(0, min(top, height - mask_height))
        return left, top


class AlphaCompositor:
    """
    Merges a QR mask into a carrier image through the alpha channel.

    Inside the mask rectangle, pixels under background cells (mask alpha
    <= threshold) are rewritten as

        out = round((src - (255 - alpha)) / alpha * 255),  out_alpha = alpha

    which reproduces the source colour when composited over white. Pixels
    under modules, and everything outside the rectangle, are copied.

    Dark source values (< 255 - alpha) fall below zero. The overflow policy
    decides what happens to them:
        'clamp' - saturate to [0, 255]
        'wrap'  - reduce modulo 256
    """

    def __init__(self, alpha=ALPHA, threshold=THRESHOLD, overflow=OVERFLOW_POLICY):
        if not 1 <= alpha <= 255:
            raise ValueError(f"alpha must be in 1..255, got {alpha}")
        if not 0 <= threshold <= 255:
            raise ValueError(f"threshold must be in 0..255, got {threshold}")
        if overflow not in OVERFLOW_POLICIES:
            raise ValueError(f"Unknown overflow policy: {overflow}")
        self.alpha = alpha
        self.threshold = threshold
        self.overflow = overflow

    def blend(self, rgb):
        """Apply the colour rewrite to an array of 8-bit channel values."""
        values = (rgb.astype(np.float64) - (255 - self.alpha)) * 255 / self.alpha
        values = np.floor(values + 0.5)  # round half up
        if self.overflow == 'clamp':
            return np.clip(values, 0, 255).astype(np.uint8)
        return np.mod(values.astype(np.int64), 256).astype(np.uint8)

    def compose(self, carrier, mask, left, top):
        """
        Compose carrier and mask.

        Args:
            carrier: PIL image, any mode (converted to RGBA)
            mask: PIL image, its alpha channel selects module/background
            left, top: Mask offset in carrier coordinates (may be out of range)

        Returns:
            New RGBA PIL image with the carrier's size
        """
        src = np.array(carrier.convert('RGBA'), dtype=np.uint8)
        out = src.copy()
        height, width = src.shape[:2]
        mask_width, mask_height = mask.size

        # Intersection of the mask rectangle with the carrier
        x0, y0 = max(left, 0), max(top, 0)
        x1, y1 = min(left + mask_width, width), min(top + mask_height, height)
        if x0 >= x1 or y0 >= y1:
            return Image.fromarray(out)

        mask_alpha = np.array(mask.convert('RGBA'), dtype=np.uint8)[
            y0 - top:y1 - top, x0 - left:x1 - left, 3]
        background = mask_alpha <= self.threshold

        region = out[y0:y1, x0:x1]
        rgb = region[..., :3]
        rgb[background] = self.blend(src[y0:y1, x0:x1, :3][background])
        region[..., 3][background] = self.alpha

        return Image.fromarray(out)


def decode_carrier(data):
    """Decode image bytes (any format Pillow reads) into an RGBA image."""
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise DecodeError(f"Cannot read image: {e}") from e
    return img.convert('RGBA')


def encode_png(image):
    """Encode an image as PNG bytes."""
    buf = io.BytesIO()
    image.save(buf, 'PNG')
    return buf.getvalue()


def to_data_url(png):
    return 'data:image/png;base64,' + base64.b64encode(png).decode('ascii')


def output_filename(now=None):
    """Timestamped output name, e.g. 20240131235959123.png"""
    now = now or datetime.now()
    return now.strftime('%Y%m%d%H%M%S') + f"{now.microsecond // 1000:03d}.png"


def flatten(image, backdrop=(0, 0, 0)):
    """
    Composite an RGBA image over a solid opaque backdrop, return RGB.

    Over white the carrier looks unchanged, over anything else the hidden
    QR pattern becomes visible.
    """
    rgba = image.convert('RGBA')
    base = Image.new('RGBA', rgba.size, tuple(backdrop[:3]) + (255,))
    return Image.alpha_composite(base, rgba).convert('RGB')


def parse_color(value):
    """Parse '#rrggbb' or 'rrggbb' into an (r, g, b) tuple."""
    text = value.lstrip('#')
    if len(text) != 6 or not all(c in string.hexdigits for c in text):
        raise ValueError(f"Invalid colour: {value}")
    return tuple(int(text[i:i + 2], 16) for i in (0, 2, 4))


def hide_image(carrier, mask, left, top, alpha=ALPHA, threshold=THRESHOLD,
               overflow=OVERFLOW_POLICY):
    """Compose a ready-made mask into a carrier image."""
    compositor = AlphaCompositor(alpha=alpha, threshold=threshold, overflow=overflow)
    return compositor.compose(carrier, mask, left, top)


def hide_message(carrier, message, left, top, size, alpha=ALPHA,
                 threshold=THRESHOLD, overflow=OVERFLOW_POLICY):
    """
    Render a message as a QR mask and hide it in a carrier image.

    Placement is used as given; use PlacementValidator to keep it inside.

    Args:
        carrier: PIL image
        message: Text payload
        left, top: Mask offset
        size: Requested mask side in pixels
        alpha, threshold, overflow: See AlphaCompositor

    Returns:
        Composite RGBA image
    """
    mask = QRMaskGenerator().generate(message, size)
    return hide_image(carrier, mask, left, top, alpha=alpha,
                      threshold=threshold, overflow=overflow)


def hide_request(request, validator=None, generator=None, compositor=None):
    """
    Run the whole pipeline for one request: decode, validate, generate
    mask, compose, encode.

    Args:
        request: HideRequest

    Returns:
        HideResult with the PNG bytes and the placement actually used
    """
    validator = validator or PlacementValidator()
    generator = generator or QRMaskGenerator()
    compositor = compositor or AlphaCompositor()

    carrier = decode_carrier(request.carrier_bytes)
    width, height = carrier.size
    validator.check_carrier(width, height)

    size = validator.mask_size(width, height, request.size)
    mask = generator.generate(request.payload, size)
    left, top = validator.clamp(width, height, mask.width, mask.height,
                                request.left, request.top)

    composite = compositor.compose(carrier, mask, left, top)
    png = encode_png(composite)

    print(f"✓ Hid {len(request.payload)} chars in {width}x{height} image")
    print(f"  QR: {mask.width}x{mask.height} at ({left}, {top})")

    return HideResult(
        png=png,
        width=width,
        height=height,
        mask_size=mask.width,
        left=left,
        top=top,
        filename=output_filename(),
    )


def _usage():
    print("Alpha-Channel QR Steganography")
    print("=" * 40)
    print()
    print("Usage:")
    print("  Hide:   python alpha_qr.py hide <image> <message> [output] [size] [left] [top]")
    print("  Reveal: python alpha_qr.py reveal <image> [output] [backdrop]")
    print()
    print("Example:")
    print("  python alpha_qr.py hide photo.jpg 'Meet me at noon' secret.png 120 40 40")
    print("  python alpha_qr.py reveal secret.png preview.png 000000")


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv

    if not argv:
        _usage()
        return 1

    mode = argv[0]

    try:
        if mode == 'hide':
            if len(argv) < 3:
                print("Usage: python alpha_qr.py hide <image> <message> [output] [size] [left] [top]")
                return 1

            with open(argv[1], 'rb') as f:
                data = f.read()
            output = argv[3] if len(argv) > 3 else output_filename()
            size = int(argv[4]) if len(argv) > 4 else DEFAULT_MASK_SIZE
            left = int(argv[5]) if len(argv) > 5 else 0
            top = int(argv[6]) if len(argv) > 6 else 0

            result = hide_request(HideRequest(data, argv[2], size, left, top))
            with open(output, 'wb') as f:
                f.write(result.png)
            print(f"\n✓ Saved to: {output}")

        elif mode == 'reveal':
            if len(argv) < 2:
                print("Usage: python alpha_qr.py reveal <image> [output] [backdrop]")
                return 1

            with open(argv[1], 'rb') as f:
                image = decode_carrier(f.read())
            output = argv[2] if len(argv) > 2 else 'reveal.png'
            backdrop = parse_color(argv[3]) if len(argv) > 3 else (0, 0, 0)

            flatten(image, backdrop).save(output, 'PNG')
            print(f"✓ Preview over #{'%02x%02x%02x' % backdrop} saved to: {output}")

        else:
            print(f"Unknown mode: {mode}")
            return 1

    except (ValueError, OSError) as e:
        print(f"✗ {e}")
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
