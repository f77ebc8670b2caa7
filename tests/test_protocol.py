#!/usr/bin/env python3
"""
Unit tests for the one-shot transfer wire protocol.
"""

import asyncio
import unittest

from codeshare.transfer import (
    TransferError, encode_header, guess_content_type, parse_header, read_header,
)
from codeshare.transfer.protocol import DEFAULT_DOWNLOAD_NAME, file_extension


class TestContentType(unittest.TestCase):
    
    def test_known_suffixes(self):
        cases = {
            'clip.mp4': 'video/mp4',
            'photo.png': 'image/png',
            'notes.txt': 'text/plain',
            'bundle.zip': 'application/zip',
            'song.mp3': 'audio/mpeg',
            'scan.JPEG': 'image/jpeg',
            'doc.pdf': 'application/pdf',
        }
        for name, expected in cases.items():
            with self.subTest(name=name):
                self.assertEqual(guess_content_type(name), expected)
    
    def test_unknown_suffix(self):
        self.assertEqual(guess_content_type('data.xyz'), 'application/octet-stream')
        self.assertEqual(guess_content_type('README'), 'application/octet-stream')
    
    def test_file_extension(self):
        self.assertEqual(file_extension('a.tar.GZ'), '.gz')
        self.assertEqual(file_extension('noext'), '.tmp')


class TestHeader(unittest.TestCase):
    
    def test_encode(self):
        self.assertEqual(encode_header('a b.txt'), b'filename: a b.txt\n')
        self.assertEqual(encode_header('日本.txt'), 'filename: 日本.txt\n'.encode('utf-8'))
    
    def test_parse(self):
        self.assertEqual(parse_header(b'filename: report.pdf\n'), 'report.pdf')
        self.assertEqual(parse_header(b'filename: report.pdf\r\n'), 'report.pdf')
        self.assertEqual(parse_header('filename: 日本.txt'.encode('utf-8')), '日本.txt')
    
    def test_parse_keeps_only_last_path_component(self):
        cases = {
            b'filename: ../escaped.txt\n': 'escaped.txt',
            b'filename: /etc/passwd\n': 'passwd',
            b'filename: ..\\..\\win.ini\n': 'win.ini',
            b'filename: a/b/c.bin\n': 'c.bin',
        }
        for line, expected in cases.items():
            with self.subTest(line=line):
                self.assertEqual(parse_header(line), expected)

    def test_parse_rejects_dot_names_and_quotes(self):
        for line in (b'filename: ..\n', b'filename: .\n', b'filename: dir/\n'):
            with self.subTest(line=line):
                self.assertEqual(parse_header(line), DEFAULT_DOWNLOAD_NAME)
        self.assertEqual(parse_header(b'filename: a"b.txt\n'), 'a_b.txt')

    def test_parse_falls_back_to_default_name(self):
        for line in (b'hello\n', b'filename:\n', b'', b'name: x\n'):
            with self.subTest(line=line):
                self.assertEqual(parse_header(line), DEFAULT_DOWNLOAD_NAME)


class TestReadHeader(unittest.IsolatedAsyncioTestCase):
    
    def _reader(self, data: bytes) -> asyncio.StreamReader:
        reader = asyncio.StreamReader()
        reader.feed_data(data)
        reader.feed_eof()
        return reader
    
    async def test_leaves_body_in_stream(self):
        reader = self._reader(b'filename: a.bin\n\x00\x01\nrest')
        
        self.assertEqual(await read_header(reader), 'a.bin')
        self.assertEqual(await reader.read(), b'\x00\x01\nrest')
    
    async def test_header_without_newline(self):
        self.assertEqual(await read_header(self._reader(b'filename: a.bin')), 'a.bin')
    
    async def test_empty_stream(self):
        with self.assertRaises(TransferError):
            await read_header(self._reader(b''))
    
    async def test_stalled_peer(self):
        reader = asyncio.StreamReader()
        with self.assertRaises(TransferError):
            await read_header(reader, timeout=0.05)


if __name__ == '__main__':
    unittest.main()
