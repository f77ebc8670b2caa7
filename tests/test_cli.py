#!/usr/bin/env python3
"""
Tests for the command-line interface.
"""

import json
import socket
import tempfile
import threading
import unittest
from pathlib import Path

from click.testing import CliRunner

from codeshare.cli import cli, format_size

from tests.helpers import free_port


def serve_once(payload: bytes):
    """Send `payload` to the first connection on a fresh port, then close."""
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(('127.0.0.1', 0))
    server.listen(1)
    
    def run():
        try:
            conn, _ = server.accept()
            with conn:
                conn.sendall(payload)
        finally:
            server.close()
    
    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return server.getsockname()[1], thread


class TestCli(unittest.TestCase):
    
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.runner = CliRunner()
        self.base_args = ['--upload-dir', self._tmp.name]
    
    def tearDown(self):
        self._tmp.cleanup()
    
    def test_config_command(self):
        result = self.runner.invoke(cli, self.base_args + ['config'])
        
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(json.loads(result.output)['upload_dir'], self._tmp.name)
    
    def test_fetch_rejects_non_numeric_code(self):
        result = self.runner.invoke(cli, self.base_args + ['fetch', 'abc'])
        self.assertEqual(result.exit_code, 2)
    
    def test_fetch_unreachable_code(self):
        result = self.runner.invoke(cli, self.base_args + ['fetch', str(free_port())])
        
        self.assertEqual(result.exit_code, 1)
        self.assertIn('Download failed', result.output)
    
    def test_fetch_writes_into_output_dir(self):
        root = Path(self._tmp.name) / 'root'
        out = root / 'out'
        out.mkdir(parents=True)
        port, thread = serve_once(b'filename: notes.txt\nhello')
        
        result = self.runner.invoke(
            cli, self.base_args + ['fetch', str(port), '--host', '127.0.0.1', '-o', str(out)]
        )
        thread.join(timeout=5)
        
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual((out / 'notes.txt').read_bytes(), b'hello')
    
    def test_fetch_ignores_path_in_announced_name(self):
        root = Path(self._tmp.name) / 'root'
        out = root / 'out'
        out.mkdir(parents=True)
        port, thread = serve_once(b'filename: ../escaped.txt\npwned')
        
        result = self.runner.invoke(
            cli, self.base_args + ['fetch', str(port), '--host', '127.0.0.1', '-o', str(out)]
        )
        thread.join(timeout=5)
        
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertFalse((root / 'escaped.txt').exists())
        self.assertEqual((out / 'escaped.txt').read_bytes(), b'pwned')
    
    def test_format_size(self):
        self.assertEqual(format_size(512), '512.0 B')
        self.assertEqual(format_size(2048), '2.0 KB')


if __name__ == '__main__':
    unittest.main()
