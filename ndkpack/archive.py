"""Deterministic APK archive writer with zipalign-compatible entry alignment.

Uncompressed entries are padded through the local header's extra field (the
0xD935 alignment record used by Android's own tooling) so that their data
starts on the requested boundary. Entry data is never modified.
"""
import os
import shutil
import struct
import zipfile
from collections import namedtuple

from .cli_logger import logger
from .utils import walk_sorted

LOCAL_HEADER_SIZE = 30
LOCAL_HEADER_SIGNATURE = b"PK\x03\x04"
ALIGNMENT_EXTRA_ID = 0xD935
ALIGNMENT_EXTRA_MIN_SIZE = 6
DEFAULT_ALIGNMENT = 4
PAGE_ALIGNMENT = 16384
# Fixed entry timestamp, the same one aapt2 writes.
FIXED_DATE_TIME = (1981, 1, 1, 1, 1, 2)

ArchiveEntry = namedtuple("ArchiveEntry", ["name", "source", "stored", "alignment"])


def is_native_library(name):
    return name.startswith("lib/") and name.endswith(".so")


def alignment_extra(header_offset, name_length, alignment):
    """Build the extra field that pushes entry data onto an alignment boundary."""
    data_start = header_offset + LOCAL_HEADER_SIZE + name_length + ALIGNMENT_EXTRA_MIN_SIZE
    padding = (-data_start) % alignment
    return struct.pack("<HHH", ALIGNMENT_EXTRA_ID, 2 + padding, alignment) + b"\0" * padding


def plan_entries(root, stored_names=(), compress_native_libs=False, compress=True,
                 so_alignment=DEFAULT_ALIGNMENT):
    """List the entries for every file under root in lexicographic order."""
    stored_names = set(stored_names)
    entries = []
    for name in walk_sorted(root):
        native = is_native_library(name)
        stored = (
            not compress
            or name in stored_names
            or (native and not compress_native_libs)
        )
        alignment = (so_alignment if native else DEFAULT_ALIGNMENT) if stored else None
        entries.append(ArchiveEntry(name, os.path.join(root, *name.split("/")), stored, alignment))
    return entries


def _zip_info(entry):
    info = zipfile.ZipInfo(entry.name, date_time=FIXED_DATE_TIME)
    info.create_system = 3
    info.external_attr = 0o644 << 16
    info.compress_type = zipfile.ZIP_STORED if entry.stored else zipfile.ZIP_DEFLATED
    return info


def write_archive(path, entries):
    """Write entries to a new zip at path. Same entries and bytes give the same archive."""
    with open(path, "wb") as f:
        with zipfile.ZipFile(f, "w") as zf:
            for entry in entries:
                info = _zip_info(entry)
                info.file_size = os.path.getsize(entry.source)
                if entry.alignment:
                    name_length = len(info.filename.encode("utf-8"))
                    info.extra = alignment_extra(f.tell(), name_length, entry.alignment)
                with open(entry.source, "rb") as src, zf.open(info, "w") as dest:
                    shutil.copyfileobj(src, dest)
    logger.info(f"  - Wrote {len(entries)} entries to {path}")
    return path


def data_offsets(path):
    """Map each entry name to the offset of its data within the archive."""
    offsets = {}
    with zipfile.ZipFile(path) as zf, open(path, "rb") as f:
        for info in zf.infolist():
            f.seek(info.header_offset)
            header = f.read(LOCAL_HEADER_SIZE)
            if len(header) < LOCAL_HEADER_SIZE or header[:4] != LOCAL_HEADER_SIGNATURE:
                raise zipfile.BadZipFile(f"Bad local header for {info.filename}")
            name_length, extra_length = struct.unpack_from("<HH", header, 26)
            offsets[info.filename] = info.header_offset + LOCAL_HEADER_SIZE + name_length + extra_length
    return offsets


def misaligned_entries(path, so_alignment=DEFAULT_ALIGNMENT):
    """Names of uncompressed entries whose data is not on the required boundary."""
    offsets = data_offsets(path)
    bad = []
    with zipfile.ZipFile(path) as zf:
        for info in zf.infolist():
            if info.compress_type != zipfile.ZIP_STORED:
                continue
            alignment = so_alignment if is_native_library(info.filename) else DEFAULT_ALIGNMENT
            if offsets[info.filename] % alignment:
                bad.append(info.filename)
    return bad
