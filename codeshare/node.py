"""
Share Node - Main Controller

Orchestrates all components behind one interface:
- Upload storage for received blobs
- File registry for share codes
- Listener pool serving each offer once
- Download bridge relaying offers back out
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from .config import Config
from .file import ParsedUpload, UploadStorage, sanitize_file_name
from .registry import FileRegistry
from .transfer import (
    CapacityError, DownloadBridge, DownloadResult, ListenerPool,
    PortConflictError, SessionOutcome,
)

logger = logging.getLogger(__name__)


class ShareNode:
    """
    A one-shot file sharing node.
    
    - share_upload(upload): store an uploaded file and offer it under a code
    - share_file(path): offer a local file under a code
    - fetch(code): receive the file offered under a code
    """
    
    def __init__(self, config: Config = None):
        """
        Initialize a share node.
        
        Args:
            config: Node configuration (uses defaults if not provided)
        """
        self.config = config or Config()
        
        self.storage = UploadStorage(self.config.upload_dir)
        self.registry = FileRegistry(self.config.code_min, self.config.code_max)
        
        self.pool = ListenerPool(
            registry=self.registry,
            storage=self.storage,
            host=self.config.listen_host,
            max_listeners=self.config.max_listeners,
            offer_ttl=self.config.offer_ttl,
            sweep_interval=self.config.sweep_interval,
            chunk_size=self.config.chunk_size,
        )
        
        self.bridge = DownloadBridge(
            host=self.config.bridge_host,
            connect_timeout=self.config.connect_timeout,
            read_timeout=self.config.transfer_timeout,
            chunk_size=self.config.chunk_size,
        )
        
        self._running = False
    
    @property
    def is_running(self) -> bool:
        return self._running
    
    async def start(self):
        """Start the listener pool."""
        if self._running:
            return
        
        await self.pool.start()
        self._running = True
        
        logger.info("Share node started")
        logger.info(f"  Upload Dir: {self.storage.upload_dir}")
        logger.info(f"  Codes: {self.config.code_min}-{self.config.code_max}")
    
    async def stop(self):
        """Stop the node, tearing down every outstanding listener."""
        if not self._running:
            return
        
        logger.info("Stopping share node...")
        self._running = False
        await self.pool.stop()
        logger.info("Share node stopped")
    
    # === File Operations ===
    
    async def share_upload(self, upload: ParsedUpload) -> int:
        """
        Store a decoded upload and offer it for one download.
        
        Returns:
            The share code
        """
        path = await self.storage.store(upload.file_name, upload.content)
        try:
            return await self._offer(path, sanitize_file_name(upload.file_name))
        except CapacityError:
            await self.storage.remove(path)
            raise
    
    async def share_file(self, file_path: Path) -> int:
        """
        Offer an existing local file for one download.
        
        The file is served in place and left alone afterwards.
        """
        file_path = Path(file_path).resolve()
        if not file_path.is_file():
            raise FileNotFoundError(f"File not found: {file_path}")
        
        # Local files are served in place and never deleted
        return await self._offer(file_path, sanitize_file_name(file_path.name), owned=False)
    
    async def _offer(self, path: Path, name: str, owned: bool = True) -> int:
        code = self.registry.offer(path, name, owned=owned)
        try:
            await self.pool.spawn(code)
        except CapacityError:
            self.registry.remove(code)
            raise
        except PortConflictError:
            # Left registered but unreachable; the sweep reclaims it
            logger.warning(f"Offer {code} ({name}) could not be served")
            raise
        logger.info(f"Offered {name} under code {code}")
        return code
    
    async def wait_consumed(self, code: int) -> Optional[SessionOutcome]:
        """Wait until the listener for `code` closes and return its outcome."""
        listener = self.pool.get_listener(code)
        task = self.pool.get_task(code)
        if listener is None or task is None:
            return None
        await asyncio.wait([task])
        return listener.outcome
    
    async def fetch(self, code: int) -> DownloadResult:
        """
        Receive the file offered under `code` via the download bridge.
        
        The caller must `discard()` the result once done with it.
        """
        return await self.bridge.fetch(code)
    
    def has_offer(self, code: int) -> bool:
        return self.registry.lookup(code) is not None
    
    def get_stats(self) -> dict:
        """Get complete node statistics."""
        return {
            'running': self._running,
            'offers': len(self.registry),
            'storage': self.storage.get_stats(),
            'listeners': self.pool.get_stats(),
            'bridge': self.bridge.get_stats(),
        }
