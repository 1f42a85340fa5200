#!/usr/bin/env python3
# -*- coding: utf-8 -*-

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


def _artist_names(value) -> List[str]:
    # 常见形式: [["歌手A", 123], ["歌手B", 456]]
    names = []
    for item in value or []:
        if isinstance(item, (list, tuple)) and item:
            names.append(str(item[0]))
        elif isinstance(item, str):
            names.append(item)
    return names


def _as_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass
class TrackMetadata:
    """Track info recovered from the metadata box."""

    track_id: Optional[int] = None
    title: str = ""
    artists: List[str] = field(default_factory=list)
    album: str = ""
    album_id: Optional[int] = None
    format: str = ""
    bitrate: Optional[int] = None
    duration: Optional[int] = None      # 毫秒
    cover_url: str = ""
    track_no: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_json(cls, meta_json: Dict[str, Any]) -> "TrackMetadata":
        return cls(
            track_id=_as_int(meta_json.get('musicId')),
            title=str(meta_json.get('musicName') or ""),
            artists=_artist_names(meta_json.get('artist')),
            album=str(meta_json.get('album') or ""),
            album_id=_as_int(meta_json.get('albumId')),
            format=str(meta_json.get('format') or "").lower(),
            bitrate=_as_int(meta_json.get('bitrate')),
            duration=_as_int(meta_json.get('duration')),
            cover_url=str(meta_json.get('albumPic') or ""),
            track_no=_as_int(meta_json.get('trackNo')),
            raw=dict(meta_json),
        )

    @property
    def artist(self) -> str:
        return "/".join(self.artists)

    def describe(self) -> List[str]:
        lines = [
            f"音乐名: {self.title}",
            f"艺人: {self.artist}",
            f"专辑: {self.album}",
            f"元数据格式: {self.format}",
            f"比特率: {self.bitrate}",
        ]
        if self.duration:
            lines.append(f"时长: {self.duration / 1000:.1f} 秒")
        if self.track_id:
            lines.append(f"曲目ID: {self.track_id}")
        if self.cover_url:
            lines.append(f"封面: {self.cover_url}")
        return lines
