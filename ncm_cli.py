#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
NCM 批量解码命令行

    ncmdecode 歌曲.ncm 下载目录/ -o 输出目录 -s

目录会递归查找 *.ncm；单个文件失败不影响其余文件。
"""

import sys
import logging
import argparse
from pathlib import Path
from typing import List, Optional

from mutagen import MutagenError
from tqdm import tqdm

from ncm_decoder import NCMDecoder, NCMError
from ncm_tags import write_tags

log = logging.getLogger("ncm")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_MISSING = 2
EXIT_INTERRUPTED = 130


def find_ncm_files(source: Path) -> List[Path]:
    if source.is_file():
        return [source]
    return sorted(p for p in source.rglob('*') if p.suffix.lower() == '.ncm' and p.is_file())


def output_path_for(ncm_path: Path, output_dir: Optional[Path], output_format: str) -> Path:
    target_dir = output_dir if output_dir else ncm_path.parent
    return target_dir / f"{ncm_path.stem}.{output_format}"


def decode_file(ncm_path: Path, output_dir: Optional[Path] = None, skip: bool = False,
                tags: bool = True, decoder: Optional[NCMDecoder] = None) -> Optional[Path]:
    """
    解码单个文件，返回输出路径；因 --skip 跳过时返回 None。
    出错时抛出 NCMError / OSError / ValueError，不会留下写了一半的输出。
    """
    decoder = decoder or NCMDecoder()

    with open(ncm_path, 'rb') as f:
        container = decoder.parse(f)
        head, output_format = decoder.peek_format(f, container)
        output_file = output_path_for(ncm_path, output_dir, output_format)

        if skip and output_file.exists():
            log.info(f"文件已存在，跳过: {output_file}")
            return None

        output_file.parent.mkdir(parents=True, exist_ok=True)
        part_file = output_file.with_name(output_file.name + '.part')
        try:
            with open(part_file, 'wb') as out:
                total_size = decoder.write_audio(f, out, container, head)
            part_file.replace(output_file)
        except BaseException:
            try:
                part_file.unlink(missing_ok=True)
            except (OSError, ValueError) as e:
                log.warning(f"无法删除临时文件 {part_file}: {e}")
            raise

    log.debug(f"  大小: {total_size / 1024 / 1024:.2f} MB")

    if tags:
        try:
            write_tags(str(output_file), container.metadata, container.cover)
        except (MutagenError, OSError, ValueError) as e:
            log.warning(f"写入标签失败 ({output_file.name}): {e}")

    return output_file


def show_info(ncm_path: Path, decoder: Optional[NCMDecoder] = None):
    decoder = decoder or NCMDecoder()
    with open(ncm_path, 'rb') as f:
        container = decoder.parse(f)

    tqdm.write(f"文件: {ncm_path.name}")
    if container.metadata:
        for line in container.metadata.describe():
            tqdm.write(line)
    else:
        tqdm.write("没有元数据")
    if container.cover:
        tqdm.write(f"内嵌封面: {len(container.cover)} 字节")
    tqdm.write("-" * 40)


def decode_paths(paths: List[Path], output_dir: Optional[Path] = None, skip: bool = False,
                 tags: bool = True, info: bool = False) -> int:
    exit_code = EXIT_OK
    ncm_files = []
    for source in paths:
        if not source.exists():
            log.error(f"找不到文件或目录: {source}")
            exit_code = EXIT_MISSING
            continue
        ncm_files.extend(find_ncm_files(source))

    if not ncm_files:
        log.info("没有找到NCM文件")
        return exit_code

    decoder = NCMDecoder()
    success_count = skipped_count = 0
    failed_files = []

    try:
        for ncm_file in tqdm(ncm_files, desc="解码", disable=len(ncm_files) < 2):
            try:
                if info:
                    show_info(ncm_file, decoder)
                    success_count += 1
                    continue
                result = decode_file(ncm_file, output_dir, skip, tags, decoder)
            except (NCMError, OSError, ValueError) as e:
                log.error(f"处理 \"{ncm_file}\" 时出错: {e}")
                failed_files.append(ncm_file.name)
                continue

            if result is None:
                skipped_count += 1
            else:
                success_count += 1
                log.info(f"成功解密到: \"{result}\"")
    except KeyboardInterrupt:
        log.warning("已中断")
        return EXIT_INTERRUPTED

    log.info(f"完成: {success_count}/{len(ncm_files)} 成功，跳过 {skipped_count}，失败 {len(failed_files)}")
    if failed_files:
        log.info("失败的文件:")
        for name in failed_files[:10]:
            log.info(f"  • {name}")
        if len(failed_files) > 10:
            log.info(f"  ... 还有 {len(failed_files) - 10} 个")
        exit_code = max(exit_code, EXIT_FAILED)

    return exit_code


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ncmdecode", description="NCM 解码器：还原为 mp3 / flac")
    parser.add_argument('paths', nargs='+', type=Path, help='NCM文件或包含NCM文件的目录（递归）')
    parser.add_argument('-o', '--output', type=Path, default=None,
                        help='输出目录（默认与输入文件相同）')
    parser.add_argument('-s', '--skip', action='store_true', help='输出文件已存在时跳过')
    parser.add_argument('--no-tags', action='store_true', help='不写入标签和封面')
    parser.add_argument('-i', '--info', action='store_true', help='只显示元数据，不解码')
    parser.add_argument('-v', '--verbose', action='store_true', help='输出调试信息')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(levelname)s: %(message)s")

    return decode_paths(args.paths, args.output, args.skip, not args.no_tags, args.info)


if __name__ == '__main__':
    sys.exit(main())
