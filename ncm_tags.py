#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
把恢复出的元数据和封面写入解码后的音频
支持 MP3 (ID3v2.3) / FLAC (Vorbis comment + PICTURE)
"""

import os
import logging
from typing import Optional

from mutagen.flac import FLAC, Picture
from mutagen.id3 import ID3, APIC, TALB, TIT2, TPE1, TRCK, ID3NoHeaderError

from ncm_meta import TrackMetadata

log = logging.getLogger("ncm.tags")

PNG_MAGIC = b'\x89PNG\r\n\x1a\n'


def cover_mime(img_bytes: bytes) -> str:
    return "image/png" if img_bytes.startswith(PNG_MAGIC) else "image/jpeg"


def _tag_mp3(audio_path: str, meta: Optional[TrackMetadata], cover: Optional[bytes]):
    try:
        tags = ID3(audio_path)
    except ID3NoHeaderError:
        tags = ID3()

    if meta:
        if meta.title:
            tags.setall("TIT2", [TIT2(encoding=3, text=[meta.title])])
        if meta.artists:
            tags.setall("TPE1", [TPE1(encoding=3, text=[meta.artist])])
        if meta.album:
            tags.setall("TALB", [TALB(encoding=3, text=[meta.album])])
        if meta.track_no:
            tags.setall("TRCK", [TRCK(encoding=3, text=[str(meta.track_no)])])

    if cover:
        tags.delall("APIC")
        tags.add(APIC(encoding=3, mime=cover_mime(cover), type=3, desc="Cover", data=cover))

    tags.save(audio_path, v2_version=3)


def _tag_flac(audio_path: str, meta: Optional[TrackMetadata], cover: Optional[bytes]):
    audio = FLAC(audio_path)

    if meta:
        if meta.title:
            audio["title"] = meta.title
        if meta.artists:
            audio["artist"] = list(meta.artists)
        if meta.album:
            audio["album"] = meta.album
        if meta.track_no:
            audio["tracknumber"] = str(meta.track_no)

    if cover:
        pic = Picture()
        pic.type = 3
        pic.mime = cover_mime(cover)
        pic.desc = "cover"
        pic.data = cover
        audio.clear_pictures()
        audio.add_picture(pic)

    audio.save()


def write_tags(audio_path: str, meta: Optional[TrackMetadata], cover: Optional[bytes]) -> bool:
    """写入标签，返回是否写入；不支持的格式直接跳过"""
    if not meta and not cover:
        return False

    ext = os.path.splitext(audio_path)[1].lower()
    if ext == ".mp3":
        _tag_mp3(audio_path, meta, cover)
    elif ext == ".flac":
        _tag_flac(audio_path, meta, cover)
    else:
        log.debug(f"不支持写标签的格式: {ext}")
        return False
    return True
