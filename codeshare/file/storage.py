"""
Upload Storage

Uploaded blobs live flat in a single process-wide upload directory:

```
<tempdir>/p2p-upload/
├── 3f2a...e1_report.pdf
└── 9c0b...77_holiday_video.mp4
```

Each blob is named `<random-id>_<sanitized-name>` so two uploads of the
same file never collide. The directory itself is created on startup and
left for the OS temp cleanup; only individual blobs are removed here.
"""

import re
import uuid
import logging
from pathlib import Path
from stat import S_ISREG

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)

DEFAULT_FILE_NAME = 'unnamed-file'

_UNSAFE_CHARS = re.compile(r'[^A-Za-z0-9._-]')


def sanitize_file_name(file_name: str) -> str:
    """Replace every character outside [A-Za-z0-9._-] with '_'."""
    if not file_name or not file_name.strip():
        file_name = DEFAULT_FILE_NAME
    return _UNSAFE_CHARS.sub('_', file_name)


class UploadStorage:
    """Writes and removes uploaded blobs under the upload directory."""
    
    def __init__(self, upload_dir: Path):
        self.upload_dir = Path(upload_dir)
        self.upload_dir.mkdir(parents=True, exist_ok=True)
    
    def blob_path(self, file_name: str) -> Path:
        """Get a fresh, unique path for a blob with the given display name."""
        unique_name = f"{uuid.uuid4().hex}_{sanitize_file_name(file_name)}"
        return self.upload_dir / unique_name
    
    async def store(self, file_name: str, content: bytes) -> Path:
        """
        Store an uploaded blob.
        
        Returns:
            Absolute path of the stored blob
        """
        path = self.blob_path(file_name).resolve()
        
        async with aiofiles.open(path, 'wb') as f:
            await f.write(content)
        
        logger.debug(f"Stored {len(content):,} bytes at {path}")
        return path
    
    async def remove(self, path: Path) -> bool:
        """Delete a blob. Returns False if it was already gone."""
        try:
            await aiofiles.os.remove(path)
            return True
        except FileNotFoundError:
            return False
    
    def get_stats(self) -> dict:
        blobs = 0
        total = 0
        for path in self.upload_dir.iterdir():
            # Blobs are deleted by finishing transfers while we scan
            try:
                stat = path.stat()
            except FileNotFoundError:
                continue
            if S_ISREG(stat.st_mode):
                blobs += 1
                total += stat.st_size
        return {
            'upload_dir': str(self.upload_dir),
            'blobs': blobs,
            'bytes': total,
        }
