#!/usr/bin/env python3
"""
IPS Patcher applies an IPS patch to a ROM file, writing the result to a new file. The original ROM
file is never modified.

Unless an output path is given, the patched file is written next to the ROM file, with `.patched`
inserted before the file extension.
"""
import argparse
import errno
import logging
import os
import platform
import sys
import time

import ips
from patchable_buffer import PatchableBuffer

__version__ = '0.1.0'

windows = platform.system() == 'Windows'

log = logging.getLogger('ips-patcher')

DEFAULT_MARKER = 'patched'


class PatchError(Exception):
    pass


class InvalidHeader(PatchError):
    pass


class Malformed(PatchError):
    pass


class SourceUnreadable(PatchError):
    pass


class DestinationUnwritable(PatchError):
    pass


class _CustomFormatter(logging.Formatter):
    yellow = '\x1b[0;33m' if not windows else ''
    bold_red = '\x1b[1;91m' if not windows else ''
    bold_fucsia = '\x1b[1;95m' if not windows else ''
    reset = '\x1b[0m' if not windows else ''

    def __init__(self):
        super().__init__()

        fmt = '%(asctime)s %(levelname)-8s %(name)-15s %(message)s'
        datefmt = '%Y-%m-%d %H:%M:%S'
        self.__formatters = {
            logging.DEBUG: logging.Formatter(fmt, datefmt),
            logging.INFO: logging.Formatter(fmt, datefmt),
            logging.WARNING: logging.Formatter(self.yellow + fmt + self.reset, datefmt),
            logging.ERROR: logging.Formatter(self.bold_red + fmt + self.reset, datefmt),
            logging.CRITICAL: logging.Formatter(self.bold_fucsia + fmt + self.reset, datefmt),
        }

    def format(self, record):
        return self.__formatters[record.levelno].format(record)


def setup_logging(verbose: bool = False):
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(_CustomFormatter())

    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO,
                        handlers=(console_handler, ),
                        force=True)


def _apply_record(buffer: PatchableBuffer, record: ips.PatchRecord):
    if isinstance(record, ips.RunLengthRecord):
        buffer.write_fill(record.offset, record.length, record.value)
    else:
        buffer.write(record.offset, record.data)


def apply(base_image, patch_bytes, *, atomic: bool = False) -> bytes:
    """
    Applies the IPS patch in `patch_bytes` to a copy of `base_image`, and returns the patched image.

    Records are applied as they are decoded; if a record turns out to be malformed, the records
    before it have already been written to the working buffer (which is then discarded). With
    `atomic`, the whole patch is decoded before the first record is applied.
    """
    reader = ips.PatchRecordReader(patch_bytes)
    try:
        reader.read_header()
    except ips.InvalidHeaderError as e:
        raise InvalidHeader(str(e)) from e

    buffer = PatchableBuffer(base_image)

    applied = 0
    try:
        if atomic:
            records = list(reader)
            for record in records:
                _apply_record(buffer, record)
                applied += 1
        else:
            for record in reader:
                _apply_record(buffer, record)
                applied += 1
    except ips.IPSFormatError as e:
        raise Malformed(f'Malformed patch after {applied} applied records: {e}') from e

    log.debug(f'{applied} records applied.')

    return buffer.into_bytes()


def default_output_path(rom_path: str, marker: str = DEFAULT_MARKER) -> str:
    stem, ext = os.path.splitext(rom_path)
    return f'{stem}.{marker}{ext}'


def read_file(filepath: str) -> bytes:
    try:
        with open(filepath, 'rb') as f:
            return f.read()
    except OSError as e:
        raise SourceUnreadable(f'Unable to read "{filepath}": {e.strerror or e}') from e


def write_file(filepath: str, data: bytes):
    if not filepath:
        raise DestinationUnwritable('Output path cannot be empty.')

    try:
        with open(filepath, 'wb') as f:
            f.write(data)
    except FileNotFoundError as e:
        raise DestinationUnwritable(f'Directory does not exist: "{filepath}".') from e
    except PermissionError as e:
        raise DestinationUnwritable(f'Permission denied: "{filepath}".') from e
    except OSError as e:
        if e.errno == errno.ENOSPC:
            raise DestinationUnwritable(f'No space left on device: "{filepath}".') from e
        raise DestinationUnwritable(f'Failed to save file to "{filepath}": {e}') from e


def apply_file(rom_path: str,
               patch_path: str,
               output: str = None,
               *,
               marker: str = DEFAULT_MARKER,
               atomic: bool = False) -> str:
    output = output if output is not None else default_output_path(rom_path, marker)

    rom = read_file(rom_path)
    patch = read_file(patch_path)

    log.info(f'Applying "{patch_path}" to "{rom_path}"...')
    patched = apply(rom, patch, atomic=atomic)

    write_file(output, patched)
    log.info(f'Patched file written to "{output}" ({len(patched)} bytes).')

    return output


def list_records(patch_path: str) -> int:
    try:
        records = ips.read_ips_file(patch_path)
    except OSError as e:
        raise SourceUnreadable(f'Unable to read "{patch_path}": {e.strerror or e}') from e
    except ips.InvalidHeaderError as e:
        raise InvalidHeader(str(e)) from e
    except ips.IPSFormatError as e:
        raise Malformed(str(e)) from e

    for record in records:
        log.info(ips.describe_record(record))
    log.info(f'{len(records)} records.')

    return len(records)


def create_args_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='ips-patcher', description=__doc__)
    parser.add_argument('rom', type=str, help='Path to the ROM file that is to be patched.')
    parser.add_argument('patch', type=str, help='Path to the IPS patch file.')
    parser.add_argument('-o',
                        '--output',
                        type=str,
                        help='Path to the patched file that is to be written. If not specified, '
                        'the marker is inserted before the extension of the ROM file name.')
    parser.add_argument('--marker',
                        type=str,
                        default=DEFAULT_MARKER,
                        help='Marker inserted in the default output file name. '
                        f'Default: "{DEFAULT_MARKER}".')
    parser.add_argument('--atomic',
                        action='store_true',
                        help='Decode the whole patch before applying any record.')
    parser.add_argument('--list',
                        action='store_true',
                        help='List the records in the patch file instead of applying it.')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable debug output.')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    return parser


def main(argv=None):
    args = create_args_parser().parse_args(argv)

    setup_logging(args.verbose)

    start_time = time.monotonic()

    try:
        if args.list:
            list_records(args.patch)
        else:
            apply_file(args.rom,
                       args.patch,
                       args.output,
                       marker=args.marker,
                       atomic=args.atomic)
    except PatchError as e:
        log.error(str(e))
        sys.exit(1)
    except Exception as e:
        log.exception(str(e) or 'Unknown error.')
        sys.exit(1)

    elapsed_time = time.monotonic() - start_time
    log.debug(f'Process completed in {elapsed_time:.2f} seconds.')


if __name__ == '__main__':
    main()
