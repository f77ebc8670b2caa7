"""
Download Bridge

Connects to a one-shot listener as a TCP client and turns its stream into
something the HTTP layer can answer with.

The listener protocol carries no length, but an HTTP response must declare
Content-Length up front, so the body is spooled to a scratch file first:

1. Connect to <bridge_host>:<code>
2. Read the `filename: <name>` header line
3. Copy the rest of the stream to a scratch file until the peer closes
4. Hand back name, inferred media type, scratch path and size

The caller owns the scratch file on success and must `discard()` it once
the response is sent. On any failure the scratch file is removed here.
"""

import asyncio
import os
import tempfile
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import aiofiles
import aiofiles.os

from .protocol import (
    TransferError, read_header, guess_content_type, file_extension
)

logger = logging.getLogger(__name__)

RELAY_CHUNK_SIZE = 64 * 1024


@dataclass
class DownloadResult:
    """A fully received one-shot transfer, spooled to disk."""
    code: int
    file_name: str
    content_type: str
    path: Path
    size: int
    
    @property
    def content_disposition(self) -> str:
        return f'attachment; filename="{self.file_name}"'
    
    async def discard(self):
        """Delete the scratch file."""
        try:
            await aiofiles.os.remove(self.path)
        except FileNotFoundError:
            pass


class DownloadBridge:
    """Fetches files from local one-shot listeners by share code."""
    
    def __init__(self, host: str = '127.0.0.1',
                 connect_timeout: float = 10.0,
                 read_timeout: Optional[float] = 60.0,
                 chunk_size: int = RELAY_CHUNK_SIZE,
                 scratch_dir: Optional[Path] = None):
        self.host = host
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.chunk_size = chunk_size
        self.scratch_dir = scratch_dir
        
        # Statistics
        self.downloads_completed = 0
        self.downloads_failed = 0
        self.bytes_relayed = 0
    
    async def fetch(self, code: int) -> DownloadResult:
        """
        Receive the file offered under `code`.
        
        Raises:
            TransferError: if the listener is unreachable or the transfer breaks
        """
        try:
            result = await self._fetch(code)
        except TransferError:
            self.downloads_failed += 1
            raise
        
        self.downloads_completed += 1
        self.bytes_relayed += result.size
        return result
    
    async def _fetch(self, code: int) -> DownloadResult:
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, code),
                timeout=self.connect_timeout
            )
        except asyncio.TimeoutError as e:
            raise TransferError(f"Timed out connecting to code {code}") from e
        except OSError as e:
            raise TransferError(f"Could not connect to code {code}: {e}") from e
        
        scratch: Optional[Path] = None
        try:
            file_name = await read_header(reader, timeout=self.read_timeout)
            
            fd, scratch_name = tempfile.mkstemp(
                prefix='download-',
                suffix=file_extension(file_name),
                dir=self.scratch_dir,
            )
            os.close(fd)
            scratch = Path(scratch_name)
            
            size = 0
            async with aiofiles.open(scratch, 'wb') as f:
                while True:
                    chunk = await asyncio.wait_for(
                        reader.read(self.chunk_size),
                        timeout=self.read_timeout
                    )
                    if not chunk:
                        break
                    await f.write(chunk)
                    size += len(chunk)
        except BaseException as e:
            if scratch is not None:
                await aiofiles.os.remove(scratch)
            if isinstance(e, asyncio.TimeoutError):
                raise TransferError(f"Transfer from code {code} stalled") from e
            if isinstance(e, OSError) and not isinstance(e, TransferError):
                raise TransferError(f"Transfer from code {code} failed: {e}") from e
            raise
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError as e:
                logger.debug(f"Error closing bridge connection: {e}")
        
        logger.info(f"Received {file_name} ({size:,} bytes) from code {code}")
        
        return DownloadResult(
            code=code,
            file_name=file_name,
            content_type=guess_content_type(file_name),
            path=scratch,
            size=size,
        )
    
    def get_stats(self) -> dict:
        """Get bridge statistics."""
        return {
            'completed': self.downloads_completed,
            'failed': self.downloads_failed,
            'bytes_relayed': self.bytes_relayed,
        }
