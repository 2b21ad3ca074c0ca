"""Serialize decided (status, body) pairs into HTTP/1.1 responses."""

from http import HTTPStatus
from typing import Union

from .models import Response

TEXT_PLAIN = 'text/plain; charset=utf-8'
TEXT_HTML = 'text/html; charset=utf-8'


def build_response(status_code: int, body: Union[str, bytes], content_type: str = TEXT_PLAIN) -> Response:
    """Build a one-shot response; Content-Length is the encoded byte length of body."""
    if isinstance(body, str):
        body = body.encode('utf-8')
    headers = {
        'Content-Type': content_type,
        'Content-Length': str(len(body)),
        'Connection': 'close',
    }
    return Response(
        status_code=status_code,
        status_text=HTTPStatus(status_code).phrase,
        headers=headers,
        body=body,
    )
