import contextlib
import os
import shutil
import tempfile

from ..cli_logger import logger

# -------------------- Helpers: safe paths --------------------

def safe_join(base, *paths):
    """Safely join paths, preventing path traversal out of base."""
    base = os.path.abspath(base)
    final = os.path.abspath(os.path.join(base, *paths))
    if not final.startswith(base + os.sep) and final != base:
        raise IOError(f"Unsafe path detected: {final}")
    return final


def ensure_dir(path):
    """Create a directory if it is missing. Safe to call from several workers."""
    os.makedirs(path, exist_ok=True)
    return path


def walk_sorted(root):
    """Yield archive-style relative paths of all files under root in lexicographic order."""
    entries = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for filename in filenames:
            full = os.path.join(dirpath, filename)
            entries.append(os.path.relpath(full, root).replace(os.sep, "/"))
    return sorted(entries)


# -------------------- Staging & atomic output --------------------

def create_staging_dir(build_dir, name):
    """Create a fresh staging directory for one build. Never reused."""
    ensure_dir(build_dir)
    staging = tempfile.mkdtemp(prefix=f"{name}-staging-", dir=build_dir)
    logger.info(f"  - Staging directory: {staging}")
    return staging


def remove_tree(path):
    try:
        shutil.rmtree(path)
        logger.info(f"  - Cleaned up staging directory: {path}")
    except OSError as e:
        logger.warning(f"Could not clean up staging directory {path}: {e}")


@contextlib.contextmanager
def atomic_output(path):
    """Yield a temporary path next to ``path``; move it into place only on success.

    If the body raises, the temporary file is removed and ``path`` is left
    untouched.
    """
    directory = os.path.dirname(os.path.abspath(path)) or "."
    ensure_dir(directory)
    fd, temp_path = tempfile.mkstemp(prefix=f".{os.path.basename(path)}.", suffix=".tmp", dir=directory)
    os.close(fd)
    try:
        yield temp_path
        os.replace(temp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.remove(temp_path)
        raise
