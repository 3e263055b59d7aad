#!/usr/bin/env python3
"""
🐧 PNGN Hilite - Command Line Interface
=======================================
Copyright (c) 2025 PNGN-Tec LLC
"""

import sys
import asyncio
import logging
import argparse

from config import LANGUAGES, describe_config, get_config
from hilite_highlight import load_languages
from hilite_service import (
    HighlightService, RenderGate, describe_error, load_assets, normalize_newlines,
)
from hilite_errors import HiliteError

logger = logging.getLogger('hilite.cli')


def read_source(path):
    if path in (None, '-'):
        return sys.stdin.read()
    with open(path, encoding='utf-8') as f:
        return f.read()


async def run(args, service: HighlightService) -> int:
    source = read_source(args.file)

    if args.mode == 'message':
        reply = await service.handle_message(args.identity, source)
        if reply is None:
            print("(not a highlight request)", file=sys.stderr)
            return 1
        if reply.error:
            print(reply.error, file=sys.stderr)
            return 1
        for message in reply.messages:
            print(message)
        if reply.attachment:
            with open(args.output, 'wb') as f:
                f.write(reply.attachment.data)
            print(f"✓ Saved {args.output} ({reply.attachment.width}x{reply.attachment.height})")
        return 0

    language = service.languages.get(args.lang)
    if language is None:
        print(f"Language '{args.lang}' is not available", file=sys.stderr)
        return 1
    try:
        if args.mode == 'ansi':
            for chunk in service.highlight_ansi(language, source):
                print(chunk)
        else:
            image = await service.render_image(args.identity, language, normalize_newlines(source))
            with open(args.output, 'wb') as f:
                f.write(image.data)
            print(f"✓ Saved {args.output} ({image.width}x{image.height}, {len(image.data)} B)")
    except HiliteError as e:
        print(describe_error(e.kind), file=sys.stderr)
        return 1
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(description='PNGN Hilite syntax highlighter')
    parser.add_argument('file', nargs='?', help='source file (stdin if omitted)')
    parser.add_argument('--lang', default='python', choices=sorted(LANGUAGES))
    parser.add_argument('--mode', default='ansi', choices=('ansi', 'png', 'message'))
    parser.add_argument('--output', default='code.png')
    parser.add_argument('--identity', default='cli')
    parser.add_argument('--verbose', action='store_true')
    args = parser.parse_args(argv)

    config = get_config()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose or config.debug_mode else config.log_level,
        format='%(asctime)s %(name)s %(levelname)s: %(message)s',
    )
    if args.verbose:
        for key, value in describe_config().items():
            logger.info(f"{key}: {value}")

    service = HighlightService(load_languages(), load_assets(config), RenderGate(), config)
    try:
        return asyncio.run(run(args, service))
    finally:
        service.shutdown()


if __name__ == "__main__":
    sys.exit(main())
