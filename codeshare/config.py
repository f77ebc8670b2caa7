"""
Configuration Management

Handles loading configuration from environment variables and config files.
"""

import os
import tempfile
from pathlib import Path
from dataclasses import dataclass, field
from typing import List, Optional
import json

from dotenv import load_dotenv


def _default_upload_dir() -> Path:
    return Path(tempfile.gettempdir()) / 'p2p-upload'


@dataclass
class Config:
    """
    Share node configuration.
    
    Configuration priority (highest to lowest):
    1. Environment variables (CODESHARE_*)
    2. Config file (config.json)
    3. Default values
    """
    # Network
    host: str = '0.0.0.0'
    api_port: int = 8080
    listen_host: str = '0.0.0.0'
    bridge_host: str = '127.0.0.1'
    
    # Storage
    upload_dir: Path = field(default_factory=_default_upload_dir)
    
    # Share codes (IANA dynamic port range)
    code_min: int = 49152
    code_max: int = 65535
    
    # Listener supervision
    max_listeners: int = 64
    offer_ttl: float = 600.0  # 0 disables expiry
    sweep_interval: float = 30.0
    
    # Timeouts (seconds)
    connect_timeout: float = 10.0
    transfer_timeout: float = 60.0
    
    # Performance
    chunk_size: int = 64 * 1024  # 64KB
    
    # HTTP
    cors_origins: List[str] = field(default_factory=lambda: ['*'])
    
    # Logging
    log_level: str = 'INFO'
    
    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        load_dotenv()
        
        config = cls()
        
        # Network
        config.host = os.getenv('CODESHARE_HOST', config.host)
        config.api_port = int(os.getenv('CODESHARE_API_PORT', config.api_port))
        config.listen_host = os.getenv('CODESHARE_LISTEN_HOST', config.listen_host)
        config.bridge_host = os.getenv('CODESHARE_BRIDGE_HOST', config.bridge_host)
        
        # Storage
        upload_dir = os.getenv('CODESHARE_UPLOAD_DIR')
        if upload_dir:
            config.upload_dir = Path(upload_dir)
        
        # Share codes
        config.code_min = int(os.getenv('CODESHARE_CODE_MIN', config.code_min))
        config.code_max = int(os.getenv('CODESHARE_CODE_MAX', config.code_max))
        
        # Listener supervision
        config.max_listeners = int(
            os.getenv('CODESHARE_MAX_LISTENERS', config.max_listeners)
        )
        config.offer_ttl = float(os.getenv('CODESHARE_OFFER_TTL', config.offer_ttl))
        config.sweep_interval = float(
            os.getenv('CODESHARE_SWEEP_INTERVAL', config.sweep_interval)
        )
        
        # Transfer
        config.connect_timeout = float(
            os.getenv('CODESHARE_CONNECT_TIMEOUT', config.connect_timeout)
        )
        config.transfer_timeout = float(
            os.getenv('CODESHARE_TRANSFER_TIMEOUT', config.transfer_timeout)
        )
        config.chunk_size = int(os.getenv('CODESHARE_CHUNK_SIZE', config.chunk_size))
        
        origins = os.getenv('CODESHARE_CORS_ORIGINS', '')
        if origins:
            config.cors_origins = [o.strip() for o in origins.split(',') if o.strip()]
        
        # Logging
        config.log_level = os.getenv('CODESHARE_LOG_LEVEL', config.log_level)
        
        return config
    
    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Load configuration from a JSON file."""
        if not path.exists():
            return cls()
        
        with open(path) as f:
            data = json.load(f)
        
        config = cls()
        
        # Network
        config.host = data.get('host', config.host)
        config.api_port = data.get('api_port', config.api_port)
        config.listen_host = data.get('listen_host', config.listen_host)
        config.bridge_host = data.get('bridge_host', config.bridge_host)
        
        # Storage
        if 'upload_dir' in data:
            config.upload_dir = Path(data['upload_dir'])
        
        # Share codes
        config.code_min = data.get('code_min', config.code_min)
        config.code_max = data.get('code_max', config.code_max)
        
        # Listener supervision
        config.max_listeners = data.get('max_listeners', config.max_listeners)
        config.offer_ttl = data.get('offer_ttl', config.offer_ttl)
        config.sweep_interval = data.get('sweep_interval', config.sweep_interval)
        
        # Timeouts
        config.connect_timeout = data.get('connect_timeout', config.connect_timeout)
        config.transfer_timeout = data.get('transfer_timeout', config.transfer_timeout)
        
        # Performance
        config.chunk_size = data.get('chunk_size', config.chunk_size)
        
        # HTTP
        config.cors_origins = data.get('cors_origins', config.cors_origins)
        
        # Logging
        config.log_level = data.get('log_level', config.log_level)
        
        return config
    
    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'host': self.host,
            'api_port': self.api_port,
            'listen_host': self.listen_host,
            'bridge_host': self.bridge_host,
            'upload_dir': str(self.upload_dir),
            'code_min': self.code_min,
            'code_max': self.code_max,
            'max_listeners': self.max_listeners,
            'offer_ttl': self.offer_ttl,
            'sweep_interval': self.sweep_interval,
            'connect_timeout': self.connect_timeout,
            'transfer_timeout': self.transfer_timeout,
            'chunk_size': self.chunk_size,
            'cors_origins': list(self.cors_origins),
            'log_level': self.log_level,
        }
    
    def save(self, path: Path):
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from file and environment.
    
    Environment variables override file settings.
    """
    # Start with defaults
    config = Config()
    
    # Load from file if provided
    if config_path and config_path.exists():
        config = Config.from_file(config_path)
    
    # Override with environment variables
    env_config = Config.from_env()
    
    # Merge (env takes precedence for non-default values)
    defaults = Config()
    for key in ['host', 'api_port', 'listen_host', 'bridge_host', 'upload_dir',
                'code_min', 'code_max', 'max_listeners', 'offer_ttl',
                'sweep_interval', 'connect_timeout', 'transfer_timeout',
                'chunk_size', 'cors_origins', 'log_level']:
        env_val = getattr(env_config, key)
        if env_val != getattr(defaults, key):
            setattr(config, key, env_val)
    
    return config


# Example config file template
EXAMPLE_CONFIG = """
{
  "host": "0.0.0.0",
  "api_port": 8080,
  "listen_host": "0.0.0.0",
  "upload_dir": "/tmp/p2p-upload",
  "code_min": 49152,
  "code_max": 65535,
  "max_listeners": 64,
  "offer_ttl": 600,
  "log_level": "INFO"
}
"""
