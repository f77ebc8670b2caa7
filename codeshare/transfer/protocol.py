"""
One-Shot Transfer Protocol

Design Decision: Wire Format
============================

Options Considered:
1. HTTP between node and listener
   - Standard, but a whole server per share code
   
2. Length-prefixed frames (4-byte length + JSON header + data)
   - Receiver knows the size up front
   - Sender must know the size before the first byte
   
3. One text header line + raw stream, closed by the sender
   - Trivial to produce and to debug with netcat
   - End of file is the end of the stream

Decision: Header line + raw stream
- Each listener serves exactly one file to exactly one peer, so there is
  no framing between messages to get wrong
- The bridge buffers to a scratch file to learn the length anyway

Message Format:
```
filename: <name>\n
<raw file bytes ...>
<connection close>
```

The name is UTF-8 and unescaped; names come from the upload sanitizer, so
they never contain a newline.
"""

import asyncio
import logging
import re
from pathlib import PurePath
from typing import Optional

logger = logging.getLogger(__name__)

HEADER_PREFIX = 'filename: '
DEFAULT_DOWNLOAD_NAME = 'downloaded-file'
DEFAULT_MEDIA_TYPE = 'application/octet-stream'

_UNSAFE_NAME_CHARS = re.compile(r'[\x00-\x1f\x7f"]')

CONTENT_TYPES = {
    # Video
    '.mp4': 'video/mp4',
    '.webm': 'video/webm',
    '.avi': 'video/x-msvideo',
    '.mov': 'video/quicktime',
    '.mkv': 'video/x-matroska',
    # Audio
    '.mp3': 'audio/mpeg',
    '.wav': 'audio/wav',
    # Images
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.png': 'image/png',
    '.gif': 'image/gif',
    # Documents and text
    '.pdf': 'application/pdf',
    '.txt': 'text/plain',
    '.html': 'text/html',
    '.json': 'application/json',
    # Archives
    '.zip': 'application/zip',
}


class TransferError(ConnectionError):
    """Raised when a one-shot transfer cannot be completed."""


def encode_header(file_name: str) -> bytes:
    """Build the header line announcing a file."""
    return f"{HEADER_PREFIX}{file_name}\n".encode('utf-8')


def parse_header(line: bytes) -> str:
    """
    Extract the file name from a header line.
    
    Anything that is not a `filename: <name>` line yields the default name.
    The name comes from the peer, so only its last path component is kept
    and control characters and quotes are replaced.
    """
    header = line.decode('utf-8', errors='replace').strip()
    if header.startswith(HEADER_PREFIX.rstrip()):
        name = header[len(HEADER_PREFIX.rstrip()):].replace('\r', '').strip()
        name = name.replace('\\', '/').rsplit('/', 1)[-1]
        name = _UNSAFE_NAME_CHARS.sub('_', name).strip()
        if name and name not in ('.', '..'):
            return name
    return DEFAULT_DOWNLOAD_NAME



async def read_header(reader: asyncio.StreamReader,
                      timeout: Optional[float] = None) -> str:
    """
    Read the header line from a listener stream.
    
    Returns:
        The announced file name
    
    Raises:
        TransferError: if the peer sends nothing, an oversized header, or stalls
    """
    try:
        line = await asyncio.wait_for(
            reader.readuntil(b'\n'),
            timeout=timeout
        )
    except asyncio.IncompleteReadError as e:
        if not e.partial:
            raise TransferError("Peer closed the connection without sending a file") from e
        # Stream ended before a newline: everything sent was the header
        line = e.partial
    except asyncio.LimitOverrunError as e:
        raise TransferError("Transfer header line is too long") from e
    except asyncio.TimeoutError as e:
        raise TransferError("Timed out waiting for transfer header") from e
    
    return parse_header(line)


def guess_content_type(file_name: str) -> str:
    """Infer a media type from the file's extension."""
    return CONTENT_TYPES.get(file_extension(file_name, default=''), DEFAULT_MEDIA_TYPE)


def file_extension(file_name: str, default: str = '.tmp') -> str:
    """Lower-cased extension including the dot, or `default` if there is none."""
    suffix = PurePath(file_name).suffix.lower()
    return suffix or default
