#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
NCM 容器解码核心

读取 .ncm 容器：校验文件头、恢复音频密钥与元数据、提取封面，
再用按位置索引的密钥流还原出原始 MP3/FLAC 字节。
不涉及路径、目录遍历和输出文件策略，这些由调用方（ncm_cli）负责。
"""

import io
import json
import base64
import struct
import binascii
import logging
from dataclasses import dataclass
from typing import BinaryIO, Optional, Tuple, Union

from Crypto.Cipher import AES
from Crypto.Util.Padding import unpad

from ncm_meta import TrackMetadata

log = logging.getLogger("ncm.decoder")

MAGIC = b'CTENFDAM'
CORE_KEY = binascii.a2b_hex('687A4852416D736F356B496E62617857')
META_KEY = binascii.a2b_hex('2331346C6A6B5F215C5D2630553C2728')

KEY_XOR = 0x64
META_XOR = 0x63
KEY_PREFIX = b'neteasecloudmusic'
META_PREFIX = b"163 key(Don't modify):"
MUSIC_PREFIX = b'music:'

RESERVED_GAP = 2
CHECKSUM_GAP = 9            # CRC32 + 5 字节空白，解码时不使用
BLOCK_SIZE = 0x8000

# 只允许这些格式名出现在输出文件扩展名里
KNOWN_FORMATS = ("mp3", "flac", "ogg", "wav", "m4a")

Source = Union[bytes, bytearray, memoryview, BinaryIO]


class NCMError(Exception):
    """解码单个容器时的致命错误"""


class MalformedHeader(NCMError):
    pass


class TruncatedInput(NCMError):
    pass


class KeyRecoveryFailed(NCMError):
    pass


class _Cursor:
    """在二进制流上按长度读取，不足即报 TruncatedInput"""

    def __init__(self, stream: BinaryIO):
        self.stream = stream
        self.consumed = 0

    def read_exact(self, size: int, what: str) -> bytes:
        data = self.stream.read(size) if size else b''
        if len(data) != size:
            raise TruncatedInput(f"{what}: 需要 {size} 字节，只剩 {len(data)} 字节")
        self.consumed += size
        return data

    def read_u32(self, what: str) -> int:
        return struct.unpack('<I', self.read_exact(4, what))[0]

    def skip(self, size: int, what: str):
        self.read_exact(size, what)


def _xor_bytes(data: bytes, value: int) -> bytes:
    result = bytearray(data)
    for i in range(len(result)):
        result[i] ^= value
    return bytes(result)


def aes_ecb_decrypt(data: bytes, key: bytes) -> bytes:
    cipher = AES.new(key, AES.MODE_ECB)
    return unpad(cipher.decrypt(data), AES.block_size)


class KeyBox:
    """
    由音频密钥派生的 256 项置换表。

    掩码只与位置 n 有关：i = (n + 1) & 0xff，
    mask(n) = T[(T[i] + T[(i + T[i]) & 0xff]) & 0xff]。
    因为只依赖 n mod 256，这里预先算好一个 256 字节的周期。
    """

    def __init__(self, raw_key: bytes):
        if not raw_key:
            raise ValueError("音频密钥为空")

        table = bytearray(range(256))
        last_byte = 0
        key_offset = 0
        for i in range(256):
            swap = table[i]
            c = (swap + last_byte + raw_key[key_offset]) & 0xff
            key_offset += 1
            if key_offset >= len(raw_key):
                key_offset = 0
            table[i] = table[c]
            table[c] = swap
            last_byte = c

        self.table = bytes(table)
        self._period = bytes(self.mask(n) for n in range(256))

    def mask(self, n: int) -> int:
        t = self.table
        j = (n + 1) & 0xff
        return t[(t[j] + t[(j + t[j]) & 0xff]) & 0xff]

    def keystream(self, offset: int, length: int) -> bytes:
        if length <= 0:
            return b''
        start = offset & 0xff
        repeats = (start + length) // 256 + 1
        return (self._period * repeats)[start:start + length]

    def apply(self, data: bytes, offset: int = 0) -> bytes:
        """对从 offset 开始的一段数据做异或（加掩码与去掩码是同一操作）"""
        if not data:
            return b''
        stream = self.keystream(offset, len(data))
        masked = int.from_bytes(data, 'big') ^ int.from_bytes(stream, 'big')
        return masked.to_bytes(len(data), 'big')


def demask(data: bytes, key_box: KeyBox, offset: int = 0) -> bytes:
    return key_box.apply(bytes(data), offset)


def demask_stream(source: BinaryIO, sink: BinaryIO, key_box: KeyBox,
                  block_size: int = BLOCK_SIZE, position: int = 0) -> int:
    """逐块去掩码，块之间只传递位置计数，返回写出的字节数"""
    written = 0
    while True:
        chunk = source.read(block_size)
        if not chunk:
            break
        sink.write(key_box.apply(chunk, position + written))
        written += len(chunk)
    return written


def detect_format(data: bytes) -> Optional[str]:
    if len(data) < 4:
        return None

    if data[:4] == b'fLaC':
        return 'flac'
    elif data[:3] == b'ID3':
        return 'mp3'
    elif data[0] == 0xff and (data[1] & 0xe0) == 0xe0:
        return 'mp3'
    elif data[:4] == b'OggS':
        return 'ogg'
    elif data[:4] == b'RIFF':
        return 'wav'
    elif len(data) > 8 and data[4:8] == b'ftyp':
        return 'm4a'

    return None


@dataclass
class NCMContainer:
    key_box: KeyBox
    metadata: Optional[TrackMetadata]
    cover: Optional[bytes]
    audio_offset: int


@dataclass
class DecodeResult:
    format: str
    metadata: Optional[TrackMetadata]
    cover: Optional[bytes]
    audio_size: int


class NCMDecoder:
    DEFAULT_FORMAT = 'mp3'

    def read_header(self, cursor: _Cursor) -> Tuple[bytes, bytes]:
        magic = cursor.stream.read(len(MAGIC))
        if magic != MAGIC:
            raise MalformedHeader(f"无效的NCM文件头: {binascii.b2a_hex(magic[:8])!r}")
        cursor.consumed += len(magic)
        cursor.skip(RESERVED_GAP, "文件头保留字节")

        key_length = cursor.read_u32("密钥长度")
        key_box = cursor.read_exact(key_length, "密钥区")
        log.debug(f"密钥长度: {key_length} 字节")

        meta_length = cursor.read_u32("元数据长度")
        meta_box = cursor.read_exact(meta_length, "元数据区")
        log.debug(f"元数据长度: {meta_length} 字节")
        return key_box, meta_box

    def recover_key(self, key_box: bytes) -> bytes:
        try:
            key_data = aes_ecb_decrypt(_xor_bytes(key_box, KEY_XOR), CORE_KEY)
        except ValueError as e:
            raise KeyRecoveryFailed(f"密钥解密失败: {e}") from e

        if len(key_data) <= len(KEY_PREFIX):
            raise KeyRecoveryFailed(f"密钥记录过短: {len(key_data)} 字节")
        if not key_data.startswith(KEY_PREFIX):
            log.debug(f"密钥前缀不符: {key_data[:len(KEY_PREFIX)]!r}")
        return key_data[len(KEY_PREFIX):]

    def recover_metadata(self, meta_box: bytes) -> Optional[TrackMetadata]:
        """
        元数据区为空或无法解析时都返回 None（后者额外记一条 warning）。
        None 就是"默认元数据"：输出格式改为嗅探，不写标签。
        """
        if not meta_box:
            return None

        try:
            meta_data = _xor_bytes(meta_box, META_XOR)[len(META_PREFIX):]
            meta_data = base64.b64decode(meta_data)
            meta_data = aes_ecb_decrypt(meta_data, META_KEY)[len(MUSIC_PREFIX):]
            meta_json = json.loads(meta_data.decode('utf-8'))
            return TrackMetadata.from_json(meta_json)
        except (ValueError, TypeError, AttributeError) as e:
            # binascii.Error / JSONDecodeError / UnicodeDecodeError 都是 ValueError
            log.warning(f"无法解析元数据，忽略: {e}")
            return None

    def read_cover(self, cursor: _Cursor) -> Optional[bytes]:
        cursor.skip(CHECKSUM_GAP, "校验区")
        image_size = cursor.read_u32("封面长度")
        if image_size == 0:
            return None
        return cursor.read_exact(image_size, "封面数据")

    def _parse(self, cursor: _Cursor) -> NCMContainer:
        key_box, meta_box = self.read_header(cursor)
        raw_key = self.recover_key(key_box)
        metadata = self.recover_metadata(meta_box)
        cover = self.read_cover(cursor)
        log.debug(f"音频起始: 0x{cursor.consumed:x}")
        return NCMContainer(KeyBox(raw_key), metadata, cover, cursor.consumed)

    def parse(self, source: Source) -> NCMContainer:
        """解析到音频区之前为止；文件对象会停在音频区起点"""
        return self._parse(_Cursor(_as_stream(source)))

    def peek_format(self, stream: BinaryIO, container: NCMContainer) -> Tuple[bytes, str]:
        """
        读取音频区开头的 16 字节并确定输出格式。
        元数据里的 format 只有在 KNOWN_FORMATS 之内才采用（它会成为文件扩展名），
        否则看去掩码后的文件头。
        返回读到的原始字节，交给 write_audio 继续写出。
        """
        head = stream.read(16)
        meta_format = container.metadata.format if container.metadata else ""
        if meta_format in KNOWN_FORMATS:
            return head, meta_format
        if meta_format:
            log.warning(f"忽略未知的元数据格式: {meta_format!r}")
        detected = detect_format(demask(head, container.key_box))
        return head, detected or self.DEFAULT_FORMAT

    def write_audio(self, stream: BinaryIO, sink: BinaryIO, container: NCMContainer,
                    head: bytes = b'') -> int:
        sink.write(demask(head, container.key_box))
        total = len(head)
        total += demask_stream(stream, sink, container.key_box, position=total)
        log.debug(f"音频大小: {total} 字节")
        return total

    def decode(self, source: Source, sink: BinaryIO) -> DecodeResult:
        stream = _as_stream(source)
        container = self.parse(stream)
        head, output_format = self.peek_format(stream, container)
        total = self.write_audio(stream, sink, container, head)
        return DecodeResult(output_format, container.metadata, container.cover, total)


def _as_stream(source: Source) -> BinaryIO:
    if isinstance(source, (bytes, bytearray, memoryview)):
        return io.BytesIO(bytes(source))
    return source


def decode_bytes(data: bytes) -> Tuple[bytes, DecodeResult]:
    sink = io.BytesIO()
    result = NCMDecoder().decode(data, sink)
    return sink.getvalue(), result
