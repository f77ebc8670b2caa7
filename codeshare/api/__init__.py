"""
API Module - REST API for the Share Node

Provides the HTTP upload and download endpoints.
"""

from .rest import create_app, run_api_server

__all__ = ['create_app', 'run_api_server']
