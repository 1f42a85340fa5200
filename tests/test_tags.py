# -*- coding: utf-8 -*-
import struct

from mutagen.flac import FLAC
from mutagen.id3 import ID3

from ncm_meta import TrackMetadata
from ncm_tags import write_tags, cover_mime

from conftest import SAMPLE_META

JPEG_COVER = b'\xff\xd8\xff\xe0' + b'\x00' * 60
PNG_COVER = b'\x89PNG\r\n\x1a\n' + b'\x00' * 60


def minimal_flac() -> bytes:
    # 仅含 STREAMINFO 的 FLAC 头：44.1kHz / 2ch / 16bit
    packed = (44100 << 44) | (1 << 41) | (15 << 36)
    streaminfo = struct.pack('>HH', 4096, 4096) + b'\x00' * 6 + packed.to_bytes(8, 'big') + b'\x00' * 16
    return b'fLaC' + b'\x80' + len(streaminfo).to_bytes(3, 'big') + streaminfo


def test_cover_mime():
    assert cover_mime(PNG_COVER) == "image/png"
    assert cover_mime(JPEG_COVER) == "image/jpeg"


def test_nothing_to_write(tmp_path):
    path = tmp_path / "a.mp3"
    path.write_bytes(b'\xff\xfb\x90\x00' * 16)
    assert write_tags(str(path), None, None) is False
    assert path.read_bytes() == b'\xff\xfb\x90\x00' * 16


def test_unsupported_format_skipped(tmp_path):
    path = tmp_path / "a.ogg"
    path.write_bytes(b'OggS' + b'\x00' * 32)
    assert write_tags(str(path), TrackMetadata(title="x"), None) is False


def test_mp3_tags(tmp_path):
    path = tmp_path / "a.mp3"
    path.write_bytes(b'\xff\xfb\x90\x00' * 64)
    meta = TrackMetadata.from_json(dict(SAMPLE_META, artist=[["A", 1], ["B", 2]], trackNo=7))

    assert write_tags(str(path), meta, JPEG_COVER) is True

    tags = ID3(str(path))
    assert tags["TIT2"].text == ["水星记"]
    assert tags["TALB"].text == ["飞行器的执行周期"]
    assert "/".join(tags["TPE1"].text) == "A/B"
    assert str(tags["TRCK"].text[0]) == "7"
    pictures = tags.getall("APIC")
    assert len(pictures) == 1
    assert pictures[0].mime == "image/jpeg"
    assert pictures[0].data == JPEG_COVER
    assert path.read_bytes().endswith(b'\xff\xfb\x90\x00' * 64)


def test_mp3_cover_replaced(tmp_path):
    path = tmp_path / "a.mp3"
    path.write_bytes(b'\xff\xfb\x90\x00' * 64)
    write_tags(str(path), None, JPEG_COVER)
    write_tags(str(path), None, PNG_COVER)

    pictures = ID3(str(path)).getall("APIC")
    assert len(pictures) == 1
    assert pictures[0].mime == "image/png"


def test_flac_tags(tmp_path):
    path = tmp_path / "a.flac"
    path.write_bytes(minimal_flac())
    meta = TrackMetadata.from_json(dict(SAMPLE_META, artist=[["A", 1], ["B", 2]], format="flac"))

    assert write_tags(str(path), meta, PNG_COVER) is True

    audio = FLAC(str(path))
    assert audio["title"] == ["水星记"]
    assert audio["artist"] == ["A", "B"]
    assert audio["album"] == ["飞行器的执行周期"]
    assert len(audio.pictures) == 1
    assert audio.pictures[0].type == 3
    assert audio.pictures[0].mime == "image/png"
    assert audio.pictures[0].data == PNG_COVER
