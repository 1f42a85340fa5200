# -*- coding: utf-8 -*-
import json
import base64
import struct

import pytest
from Crypto.Cipher import AES
from Crypto.Util.Padding import pad

from ncm_decoder import (CORE_KEY, META_KEY, MAGIC, KEY_PREFIX, META_PREFIX, MUSIC_PREFIX,
                         KEY_XOR, META_XOR, KeyBox)

RAW_KEY = b'1234567890123456789012345678901234E7fT49x7dof9OKCgg9cdvhEuezy3iZCL1nFvBFd1T4uSktAJKmwZXsijPbijliionVUXXg9plTbXEclAE9Lb'

SAMPLE_META = {
    "musicId": 441491828,
    "musicName": "水星记",
    "artist": [["郭顶", 2843]],
    "albumId": 35005583,
    "album": "飞行器的执行周期",
    "albumPic": "https://p4.music.126.net/wSMfGvFzOAYRU_yVIfquAA==/2946691248081599.jpg",
    "bitrate": 320000,
    "duration": 325266,
    "format": "mp3",
}


def xor_all(data: bytes, value: int) -> bytes:
    return bytes(b ^ value for b in data)


def encrypt_key_box(raw_key: bytes) -> bytes:
    cipher = AES.new(CORE_KEY, AES.MODE_ECB)
    return xor_all(cipher.encrypt(pad(KEY_PREFIX + raw_key, 16)), KEY_XOR)


def encrypt_meta_box(meta_plain: bytes) -> bytes:
    cipher = AES.new(META_KEY, AES.MODE_ECB)
    encoded = base64.b64encode(cipher.encrypt(pad(meta_plain, 16)))
    return xor_all(META_PREFIX + encoded, META_XOR)


def build_ncm(audio: bytes, raw_key: bytes = RAW_KEY, meta=None, cover: bytes = b'',
              key_box: bytes = None, meta_box: bytes = None, gap: bytes = b'\x00' * 9) -> bytes:
    """拼出一个 .ncm 容器；meta 可以是 dict 或已经是明文 bytes"""
    if key_box is None:
        key_box = encrypt_key_box(raw_key)
    if meta_box is None:
        if meta is None:
            meta_box = b''
        elif isinstance(meta, bytes):
            meta_box = encrypt_meta_box(meta)
        else:
            meta_box = encrypt_meta_box(MUSIC_PREFIX + json.dumps(meta).encode('utf-8'))

    return b''.join([
        MAGIC, b'\x01\x70',
        struct.pack('<I', len(key_box)), key_box,
        struct.pack('<I', len(meta_box)), meta_box,
        gap,
        struct.pack('<I', len(cover)), cover,
        KeyBox(raw_key).apply(audio),
    ])


@pytest.fixture
def audio_bytes():
    # ID3 头 + 足够跨越多个 0x8000 块的伪音频
    body = bytes((i * 31 + 7) & 0xff for i in range(0x8000 * 2 + 1234))
    return b'ID3\x03\x00\x00\x00\x00\x00\x00' + body


@pytest.fixture
def flac_audio():
    return b'fLaC' + bytes(range(256)) * 8


@pytest.fixture
def make_ncm():
    return build_ncm
