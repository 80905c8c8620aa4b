"""
alpha-qr Backend Server
Alpha-channel QR steganography over a small JSON API.

Handles all image work in Python. Clients post a base64 image (plain or as
a data URL) plus the message and placement, and get a PNG data URL back.
"""

from http.server import ThreadingHTTPServer, BaseHTTPRequestHandler
import json
import base64
import binascii
import os
from urllib.parse import urlparse

from alpha_qr import (
    ALPHA, THRESHOLD, OVERFLOW_POLICY, DEFAULT_MASK_SIZE,
    AlphaQRError, HideRequest, PlacementValidator,
    decode_carrier, encode_png, flatten, hide_request, parse_color, to_data_url,
)

VERSION = '1.0'


def _image_bytes(image_data):
    """Strip an optional data URL prefix and decode base64."""
    if ',' in image_data:
        image_data = image_data.split(',', 1)[1]
    try:
        return base64.b64decode(image_data, validate=True)
    except (binascii.Error, ValueError):
        raise ValueError('Image is not valid base64')


class AlphaQRHandler(BaseHTTPRequestHandler):

    validator = PlacementValidator()

    def _send_json(self, data, status=200):
        self.send_response(status)
        self.send_header('Content-Type', 'application/json')
        self.send_header('Access-Control-Allow-Origin', '*')
        self.end_headers()
        self.wfile.write(json.dumps(data).encode())

    def _send_error(self, message, status=400):
        self._send_json({'error': message}, status)

    def do_OPTIONS(self):
        """Handle CORS preflight"""
        self.send_response(200)
        self.send_header('Access-Control-Allow-Origin', '*')
        self.send_header('Access-Control-Allow-Methods', 'GET, POST, OPTIONS')
        self.send_header('Access-Control-Allow-Headers', 'Content-Type')
        self.end_headers()

    def do_GET(self):
        path = urlparse(self.path).path

        if path == '/' or path == '/api/status':
            self._send_json({
                'status': 'ok',
                'version': VERSION,
                'alpha': ALPHA,
                'threshold': THRESHOLD,
                'overflow': OVERFLOW_POLICY,
            })
        else:
            self._send_error('Not found', 404)

    def do_POST(self):
        """Handle API requests"""
        path = urlparse(self.path).path
        content_length = int(self.headers.get('Content-Length', 0))
        body = self.rfile.read(content_length)

        try:
            data = json.loads(body) if body else {}
        except json.JSONDecodeError:
            self._send_error('Invalid JSON')
            return

        if not isinstance(data, dict):
            self._send_error('Invalid JSON')
            return

        handlers = {
            '/api/limits': self._handle_limits,
            '/api/compose': self._handle_compose,
            '/api/reveal': self._handle_reveal,
        }
        handler = handlers.get(path)
        if handler is None:
            self._send_error('Unknown endpoint', 404)
            return

        try:
            handler(data)
        except (AlphaQRError, ValueError, TypeError) as e:
            self._send_error(str(e))

    def _handle_limits(self, data):
        """Effective mask size for an image"""
        width = int(data.get('width', 0))
        height = int(data.get('height', 0))
        size = int(data.get('size', DEFAULT_MASK_SIZE))

        self.validator.check_carrier(width, height)

        self._send_json({
            'ok': True,
            'maskSize': self.validator.mask_size(width, height, size),
            'minCarrier': self.validator.min_carrier,
            'minMask': self.validator.min_mask,
        })

    def _handle_compose(self, data):
        """Hide a message in an image"""
        message = data.get('message', '')
        image_data = data.get('image', '')

        if not message:
            self._send_error('No message provided')
            return

        if not image_data:
            self._send_error('No image provided')
            return

        request = HideRequest(
            carrier_bytes=_image_bytes(image_data),
            payload=message,
            size=int(data.get('size', DEFAULT_MASK_SIZE)),
            left=int(data.get('left', 0)),
            top=int(data.get('top', 0)),
        )
        result = hide_request(request, validator=self.validator)

        self._send_json({
            'ok': True,
            'image': to_data_url(result.png),
            'filename': result.filename,
            'width': result.width,
            'height': result.height,
            'maskSize': result.mask_size,
            'left': result.left,
            'top': result.top,
        })

    def _handle_reveal(self, data):
        """Render an image over a solid backdrop"""
        image_data = data.get('image', '')
        if not image_data:
            self._send_error('No image provided')
            return

        image = decode_carrier(_image_bytes(image_data))
        backdrop = parse_color(data.get('backdrop', '000000'))

        self._send_json({
            'ok': True,
            'image': to_data_url(encode_png(flatten(image, backdrop))),
        })

    def log_message(self, format, *args):
        """Custom log format"""
        print(f"[alpha-qr] {args[0]}")


def make_server(port=8080, host='0.0.0.0'):
    return ThreadingHTTPServer((host, port), AlphaQRHandler)


def run_server(port=8080):
    # Use 0.0.0.0 to accept external connections (for cloud hosting)
    server = make_server(port)
    print(f"\nalpha-qr server running on port {port}")
    print("Press Ctrl+C to stop")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("\nShutting down...")
        server.shutdown()


if __name__ == '__main__':
    import sys
    # Check for PORT environment variable (Railway, Render, etc.)
    port = int(os.environ.get('PORT', sys.argv[1] if len(sys.argv) > 1 else 8080))
    run_server(port)
