"""
REST API for the Share Node

Design Decision: API Framework
==============================

Options Considered:
1. FastAPI - Modern, fast, auto-docs, async support
2. Flask - Simple, widely used, but sync-focused
3. aiohttp - Async, but less features
4. Starlette - Lightweight, FastAPI is built on it

Decision: FastAPI
- Native async support (listeners and the bridge live on the same loop)
- Automatic OpenAPI documentation
- Pydantic integration for responses

API Design:
- POST /upload takes a raw multipart/form-data body; the file part is
  decoded by our own binary-safe decoder, not by the framework
- GET /download/{code} relays a one-shot transfer as a plain download
- Every response carries permissive CORS headers; OPTIONS on any path
  is answered with 204
"""

import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import FileResponse, Response
from pydantic import BaseModel, ConfigDict, Field
from starlette.background import BackgroundTask

from ..file import DEFAULT_FILE_NAME, MultipartError, decode, parse_boundary
from ..registry import RegistryFullError, is_valid_code, parse_code
from ..transfer import CapacityError, PortConflictError, TransferError

logger = logging.getLogger(__name__)

CORS_ALLOW_METHODS = "GET, POST, OPTIONS"
CORS_ALLOW_HEADERS = "Content-Type,Authorization"


# === Pydantic Models ===

class UploadResponse(BaseModel):
    """Share code handed back for an upload."""
    model_config = ConfigDict(populate_by_name=True)
    
    port: int
    file_name: str = Field(alias="fileName")


def _cors_headers(origins: List[str], request_origin: Optional[str] = None) -> dict:
    """
    CORS headers for one response.
    
    Access-Control-Allow-Origin carries a single value, so with several
    allowed origins the request's Origin is echoed back when it is listed.
    """
    headers = {
        "Access-Control-Allow-Methods": CORS_ALLOW_METHODS,
        "Access-Control-Allow-Headers": CORS_ALLOW_HEADERS,
    }
    if not origins or "*" in origins:
        headers["Access-Control-Allow-Origin"] = "*"
    elif len(origins) == 1:
        headers["Access-Control-Allow-Origin"] = origins[0]
    else:
        headers["Vary"] = "Origin"
        if request_origin in origins:
            headers["Access-Control-Allow-Origin"] = request_origin
    return headers



# === API Creation ===

def create_app(node) -> FastAPI:
    """
    Create the FastAPI application.
    
    Args:
        node: ShareNode instance to serve
    
    Returns:
        FastAPI application
    """
    
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle startup and shutdown."""
        logger.info("API server starting...")
        await node.start()
        yield
        logger.info("API server stopping...")
        await node.stop()
    
    app = FastAPI(
        title="Share Code API",
        description="Offer a file once under a numeric share code",
        version="1.0.0",
        lifespan=lifespan,
    )
    
    origins = node.config.cors_origins
    
    @app.middleware("http")
    async def cors(request: Request, call_next):
        """Add CORS headers everywhere and short-circuit OPTIONS."""
        cors_headers = _cors_headers(origins, request.headers.get("origin"))
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=cors_headers)
        
        response = await call_next(request)
        response.headers.update(cors_headers)
        return response
    
    # === Endpoints ===
    
    @app.get("/", tags=["General"])
    async def root():
        """API root - basic info."""
        return {
            "name": "Share Code File Sharing",
            "version": "1.0.0",
            "status": "running" if node.is_running else "not running",
        }
    
    @app.get("/stats", tags=["General"])
    async def get_stats():
        """Get node statistics."""
        return node.get_stats()
    
    @app.post("/upload", response_model=UploadResponse, tags=["Files"])
    async def upload(request: Request):
        """Store the uploaded file and offer it under a fresh share code."""
        try:
            boundary = parse_boundary(request.headers.get("content-type", ""))
        except MultipartError as e:
            raise HTTPException(status_code=400, detail=f"Bad request: {e}")
        
        body = await request.body()
        
        try:
            upload = decode(body, boundary)
        except MultipartError as e:
            logger.warning(f"Rejected upload: {e}")
            raise HTTPException(status_code=400, detail=f"Could not parse file content: {e}")
        
        try:
            code = await node.share_upload(upload)
        except (CapacityError, RegistryFullError) as e:
            raise HTTPException(status_code=503, detail=str(e))
        except PortConflictError as e:
            raise HTTPException(status_code=500, detail=f"Server error: {e.strerror or e}")
        except Exception as e:
            logger.error(f"Error in processing file upload: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail=f"Server error: {e}")
        
        file_name = upload.file_name if upload.file_name.strip() else DEFAULT_FILE_NAME
        return UploadResponse(port=code, file_name=file_name)
    
    @app.get("/download", tags=["Files"])
    async def download_without_code():
        raise HTTPException(
            status_code=400,
            detail="Invalid download URL. Expected format: /download/{code}"
        )
    
    @app.get("/download/{code}", tags=["Files"])
    async def download(code: str):
        """Fetch the file offered under `code` (works once)."""
        try:
            port = parse_code(code)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid port number")
        
        if not is_valid_code(port, node.config.code_min, node.config.code_max):
            raise HTTPException(status_code=400, detail=f"Code out of range: {port}")
        
        if not node.has_offer(port):
            logger.info(f"Download for unknown code {port}")
            raise HTTPException(
                status_code=404,
                detail=f"No file is associated with code {port}"
            )
        
        try:
            result = await node.fetch(port)
        except TransferError as e:
            logger.error(f"Error downloading the file: {e}")
            raise HTTPException(status_code=500, detail=f"Error downloading file: {e}")
        except Exception as e:
            logger.error(f"Error downloading the file: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail=f"Error downloading file: {e}")
        
        return FileResponse(
            result.path,
            media_type=result.content_type,
            headers={"Content-Disposition": result.content_disposition},
            background=BackgroundTask(result.discard),
        )
    
    return app


async def run_api_server(node, host: str = "0.0.0.0", port: int = 8080):
    """
    Run the API server.
    
    Args:
        node: ShareNode instance
        host: Host to bind to
        port: Port to listen on
    """
    import uvicorn
    
    app = create_app(node)
    
    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level=node.config.log_level.lower(),
    )
    server = uvicorn.Server(config)
    await server.serve()
