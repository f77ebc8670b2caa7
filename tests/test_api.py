#!/usr/bin/env python3
"""
Tests for the HTTP upload/download contract.
"""

import tempfile
import time
import unittest
from pathlib import Path

from fastapi.testclient import TestClient

from codeshare.api import create_app
from codeshare.config import Config
from codeshare.node import ShareNode
from codeshare.registry import FileRegistry

from tests.helpers import free_port, multipart_body

BOUNDARY = 'xYzZY-boundary'


class ApiTestCase(unittest.TestCase):
    
    max_listeners = 8
    cors_origins = ['*']
    
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.upload_dir = Path(self._tmp.name) / 'p2p-upload'
        config = Config(
            upload_dir=self.upload_dir,
            listen_host='127.0.0.1',
            bridge_host='127.0.0.1',
            max_listeners=self.max_listeners,
            offer_ttl=30.0,
            cors_origins=list(self.cors_origins),
        )
        self.node = ShareNode(config)
        self.client = TestClient(create_app(self.node))
        self.client.__enter__()
    
    def tearDown(self):
        self.client.__exit__(None, None, None)
        self._tmp.cleanup()
    
    def upload(self, file_name: str, content: bytes, content_type='application/octet-stream'):
        return self.client.post(
            '/upload',
            content=multipart_body(BOUNDARY, file_name, content, content_type),
            headers={'Content-Type': f'multipart/form-data; boundary={BOUNDARY}'},
        )


class TestUploadDownload(ApiTestCase):
    
    def test_round_trip(self):
        content = bytes(range(256)) * 64 + b'\r\n--' + BOUNDARY[:-1].encode()
        
        response = self.upload('holiday video.mp4', content, 'video/mp4')
        
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data['fileName'], 'holiday video.mp4')
        code = data['port']
        
        response = self.client.get(f'/download/{code}')
        
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content, content)
        self.assertEqual(response.headers['content-type'], 'video/mp4')
        self.assertEqual(response.headers['content-length'], str(len(content)))
        self.assertEqual(response.headers['content-disposition'],
                         'attachment; filename="holiday_video.mp4"')
    
    def test_text_content_type(self):
        code = self.upload('notes.txt', b'hello', 'text/plain').json()['port']
        
        response = self.client.get(f'/download/{code}')
        
        self.assertTrue(response.headers['content-type'].startswith('text/plain'))
        self.assertEqual(response.text, 'hello')
    
    def test_code_works_only_once(self):
        code = self.upload('a.bin', b'x').json()['port']
        
        self.assertEqual(self.client.get(f'/download/{code}').status_code, 200)
        self.assertEqual(self.client.get(f'/download/{code}').status_code, 404)
    
    def test_download_consumes_offer_and_blob(self):
        code = self.upload('a.bin', b'x' * 1000).json()['port']
        self.assertEqual(len(list(self.upload_dir.iterdir())), 1)
        
        self.client.get(f'/download/{code}')
        
        self.assertEqual(self.node.get_stats()['offers'], 0)
        self.assertEqual(self.node.get_stats()['bridge']['completed'], 1)
        # The blob is deleted once the listener task wraps up
        for _ in range(50):
            if not any(self.upload_dir.iterdir()):
                break
            time.sleep(0.05)
        self.assertEqual(list(self.upload_dir.iterdir()), [])
    
    def test_blank_filename(self):
        response = self.upload('', b'data')
        
        self.assertEqual(response.json()['fileName'], 'unnamed-file')
        code = response.json()['port']
        disposition = self.client.get(f'/download/{code}').headers['content-disposition']
        self.assertEqual(disposition, 'attachment; filename="unnamed-file"')
    
    def test_filename_is_returned_as_uploaded(self):
        response = self.upload(' spaced name.txt ', b'data')
        
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['fileName'], ' spaced name.txt ')


class TestUploadErrors(ApiTestCase):
    
    def test_missing_boundary(self):
        response = self.client.post(
            '/upload', content=b'whatever',
            headers={'Content-Type': 'multipart/form-data'},
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn('boundary', response.json()['detail'])
    
    def test_not_multipart(self):
        response = self.client.post('/upload', json={'file': 'x'})
        self.assertEqual(response.status_code, 400)
    
    def test_unparseable_body(self):
        response = self.client.post(
            '/upload', content=b'no file here',
            headers={'Content-Type': f'multipart/form-data; boundary={BOUNDARY}'},
        )
        self.assertEqual(response.status_code, 400)
    
    def test_wrong_method(self):
        self.assertEqual(self.client.get('/upload').status_code, 405)
    
    def test_upload_dir_holds_nothing_after_rejection(self):
        self.client.post(
            '/upload', content=b'no file here',
            headers={'Content-Type': f'multipart/form-data; boundary={BOUNDARY}'},
        )
        self.assertEqual(list(self.upload_dir.iterdir()), [])


class TestCapacity(ApiTestCase):
    
    max_listeners = 0
    
    def test_full_pool_refuses_upload(self):
        response = self.upload('a.bin', b'x')
        
        self.assertEqual(response.status_code, 503)
        self.assertEqual(self.node.get_stats()['offers'], 0)
        self.assertEqual(list(self.upload_dir.iterdir()), [])


class TestDownloadErrors(ApiTestCase):
    
    def test_non_numeric_code(self):
        self.assertEqual(self.client.get('/download/abc').status_code, 400)
    
    def test_missing_code(self):
        self.assertEqual(self.client.get('/download').status_code, 400)
    
    def test_code_out_of_range(self):
        self.assertEqual(self.client.get('/download/80').status_code, 400)
    
    def test_unknown_code(self):
        response = self.client.get(f'/download/{self.node.config.code_min}')
        
        self.assertEqual(response.status_code, 404)
        self.assertIn('No file is associated', response.json()['detail'])
    
    def test_transfer_error(self):
        # Registered, but nothing listens on the port
        port = free_port()
        self.node.config.code_min = self.node.config.code_max = port
        self.node.registry = FileRegistry(port, port)
        self.node.registry.offer(self.upload_dir / 'ghost.bin')
        
        response = self.client.get(f'/download/{port}')
        
        self.assertEqual(response.status_code, 500)
        self.assertIn('Error downloading file', response.json()['detail'])


class TestCors(ApiTestCase):
    
    def test_options_short_circuits(self):
        for path in ('/upload', '/download/123', '/anything'):
            with self.subTest(path=path):
                response = self.client.options(path)
                self.assertEqual(response.status_code, 204)
                self.assertEqual(response.headers['access-control-allow-origin'], '*')
    
    def test_headers_on_every_response(self):
        for response in (self.client.get('/'), self.client.get('/download/abc')):
            self.assertEqual(response.headers['access-control-allow-origin'], '*')
            self.assertIn('POST', response.headers['access-control-allow-methods'])
    
    def test_root_and_stats(self):
        self.assertEqual(self.client.get('/').json()['status'], 'running')
        stats = self.client.get('/stats').json()
        self.assertEqual(stats['offers'], 0)
        self.assertEqual(stats['listeners']['max_listeners'], self.max_listeners)


class TestCorsOrigins(ApiTestCase):
    
    cors_origins = ['http://a.example', 'http://b.example']
    
    def test_listed_origin_is_echoed(self):
        for origin in self.cors_origins:
            with self.subTest(origin=origin):
                response = self.client.get('/', headers={'Origin': origin})
                self.assertEqual(response.headers['access-control-allow-origin'], origin)
                self.assertEqual(response.headers['vary'], 'Origin')
    
    def test_preflight_echoes_listed_origin(self):
        response = self.client.options('/upload', headers={'Origin': 'http://b.example'})
        
        self.assertEqual(response.status_code, 204)
        self.assertEqual(response.headers['access-control-allow-origin'], 'http://b.example')
    
    def test_unlisted_origin_gets_no_allow_origin(self):
        response = self.client.get('/', headers={'Origin': 'http://evil.example'})
        
        self.assertEqual(response.status_code, 200)
        self.assertNotIn('access-control-allow-origin', response.headers)


if __name__ == '__main__':
    unittest.main()
