"""
Bytes exchanged with an MJPEG client.

The response is a multipart/x-mixed-replace body: one part per frame, each
part starting with the boundary line and carrying its own Content-Length.
"""

BOUNDARY = b'frame'
CONTENT_TYPE = b'multipart/x-mixed-replace; boundary=' + BOUNDARY
MIME_TYPE = b'image/jpeg'

RESPONSE_PREAMBLE = (
    b'HTTP/1.1 200 OK\r\n'
    b'Content-Type: ' + CONTENT_TYPE + b'\r\n'
    b'Cache-Control: no-cache\r\n'
    b'Connection: close\r\n'
    b'Access-Control-Allow-Origin: *\r\n'
    b'\r\n'
)

PART_TRAILER = b'\r\n'


def part_header(length):
    return (b'--' + BOUNDARY + b'\r\n'
            b'Content-Type: ' + MIME_TYPE + b'\r\n'
            b'Content-Length: ' + str(length).encode('ascii') + b'\r\n\r\n')


def request_line(data):
    """First line of a raw HTTP request, decoded for logging."""
    return data.split(b'\r\n', 1)[0].split(b'\n', 1)[0].decode('latin-1').strip()


def is_get_request(data):
    # Every path gets the same stream, only the method matters.
    method = request_line(data).split(' ', 1)[0]
    return method == 'GET'
