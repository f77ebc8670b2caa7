"""
Multipart Upload Decoder

Design Decision: Parsing Strategy
=================================

Options Considered:
1. email.parser / cgi.FieldStorage - Standard library
   - Text oriented, cgi is gone from current Pythons
   
2. python-multipart streaming parser
   - Full featured, but we only ever need the first file part
   
3. Raw byte scanning for markers
   - Binary safe, no text decoding of file content
   - Small and easy to test against adversarial content

Decision: Raw byte scanning
- Markers are located with an exact byte search
- File content is sliced verbatim, never decoded
- Only the first file field is extracted; other parts are ignored

Body layout we care about:
```
--<boundary>\r\n
Content-Disposition: form-data; name="file"; filename="<name>"\r\n
Content-Type: <type>\r\n
\r\n
<raw bytes>\r\n
--<boundary>--\r\n
```
"""

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = 'application/octet-stream'

FILENAME_MARKER = b'filename="'
CONTENT_TYPE_MARKER = b'Content-Type:'
HEADER_END_MARKER = b'\r\n\r\n'


class MultipartError(ValueError):
    """Raised when a multipart body or its Content-Type cannot be decoded."""


@dataclass
class ParsedUpload:
    """The first file part of a multipart body."""
    file_name: str
    content: bytes
    content_type: str = DEFAULT_CONTENT_TYPE
    
    @property
    def size(self) -> int:
        return len(self.content)


def find_sequence(data: bytes, sequence: bytes, start: int = 0) -> int:
    """
    Find the first exact occurrence of `sequence` in `data` at or after `start`.
    
    Returns:
        Index of the match, or -1 if not found
    """
    if not sequence:
        raise ValueError("Empty search sequence")
    return data.find(sequence, start)


def find_delimiter(data: bytes, delimiter: bytes, start: int = 0) -> int:
    """
    Find the first real delimiter line at or after `start`.

    A match of `delimiter` only counts when it is the closing delimiter
    (followed by `--`) or a part delimiter (followed by optional spaces or
    tabs and CRLF). Anything else is file content that happens to start
    with the boundary bytes.

    Returns:
        Index of the delimiter, or -1 if not found
    """
    index = find_sequence(data, delimiter, start)
    while index != -1:
        rest = index + len(delimiter)
        if data.startswith(b'--', rest):
            return index
        while rest < len(data) and data[rest] in b' \t':
            rest += 1
        if data.startswith(b'\r\n', rest):
            return index
        index = find_sequence(data, delimiter, index + 1)
    return -1


def parse_boundary(content_type: str) -> str:
    """
    Extract the boundary parameter from a multipart Content-Type header.
    
    Raises:
        MultipartError: if the header is not multipart/form-data or has no boundary
    """
    if not content_type or not content_type.lower().startswith('multipart/form-data'):
        raise MultipartError("Content-Type must be multipart/form-data")
    
    index = content_type.find('boundary=')
    if index == -1:
        raise MultipartError("Missing boundary in Content-Type")
    
    boundary = content_type[index + len('boundary='):].split(';', 1)[0].strip()
    # Remove quotes if present
    if len(boundary) >= 2 and boundary.startswith('"') and boundary.endswith('"'):
        boundary = boundary[1:-1]
    
    if not boundary:
        raise MultipartError("Empty boundary in Content-Type")
    
    return boundary


def decode(body: bytes, boundary: str) -> ParsedUpload:
    """
    Decode the first file part of a multipart/form-data body.
    
    Args:
        body: Raw request body
        boundary: Boundary string, already unquoted
    
    Returns:
        ParsedUpload with the filename, exact content bytes and content type
    
    Raises:
        MultipartError: if the body has no well-formed file part
    """
    if not boundary:
        raise MultipartError("Empty boundary")
    
    name_start = find_sequence(body, FILENAME_MARKER)
    if name_start == -1:
        raise MultipartError("No file field in multipart body")
    name_start += len(FILENAME_MARKER)
    
    name_end = find_sequence(body, b'"', name_start)
    if name_end == -1:
        raise MultipartError("Unterminated filename")
    
    try:
        file_name = body[name_start:name_end].decode('utf-8')
    except UnicodeDecodeError as e:
        raise MultipartError(f"Filename is not valid UTF-8: {e}") from e
    
    header_end = find_sequence(body, HEADER_END_MARKER, name_end)
    if header_end == -1:
        raise MultipartError("Part headers are not terminated")
    content_start = header_end + len(HEADER_END_MARKER)
    
    # Content-Type is only looked for inside this part's header block
    content_type = DEFAULT_CONTENT_TYPE
    headers = body[name_end:header_end]
    type_start = find_sequence(headers, CONTENT_TYPE_MARKER)
    if type_start != -1:
        value = headers[type_start + len(CONTENT_TYPE_MARKER):]
        value = value.split(b'\r', 1)[0].split(b'\n', 1)[0].strip(b' \t')
        if value:
            content_type = value.decode('latin-1').strip()
    
    try:
        delimiter = b'\r\n--' + boundary.encode('latin-1')
    except UnicodeEncodeError as e:
        raise MultipartError(f"Invalid boundary: {boundary!r}") from e
    content_end = find_delimiter(body, delimiter, content_start)
    
    if content_end == -1 or content_end < content_start:
        raise MultipartError("Closing boundary not found")
    
    logger.debug(f"Decoded upload {file_name!r}: {content_end - content_start} bytes, {content_type}")
    
    return ParsedUpload(
        file_name=file_name,
        content=body[content_start:content_end],
        content_type=content_type,
    )
