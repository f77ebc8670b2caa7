"""Shared builders for the test suite."""

import socket
from typing import Iterable, Optional


def free_port() -> int:
    """Ask the OS for a port nothing is listening on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


def multipart_body(boundary: str, file_name: str, content: bytes,
                   content_type: Optional[str] = 'application/octet-stream',
                   fields: Iterable = ()) -> bytes:
    """Build a multipart/form-data body with one file part and optional trailing fields."""
    headers = f'Content-Disposition: form-data; name="file"; filename="{file_name}"\r\n'
    if content_type:
        headers += f'Content-Type: {content_type}\r\n'
    
    body = f'--{boundary}\r\n{headers}\r\n'.encode('utf-8') + content + b'\r\n'
    for name, value in fields:
        body += (
            f'--{boundary}\r\n'
            f'Content-Disposition: form-data; name="{name}"\r\n\r\n'
            f'{value}\r\n'
        ).encode('utf-8')
    body += f'--{boundary}--\r\n'.encode('ascii')
    return body
