"""Static Android platform knowledge: ABIs, triples and API levels.

Everything here is a constant table. Adding or removing an ABI means editing
the Abi enum and the _TARGETS table together; a test checks they agree.
"""
import enum
import platform
from collections import namedtuple

from .errors import ApiLevelOutOfRange, UnsupportedAbi, UnsupportedHost

# Lowest API level the supported NDKs can still target.
MIN_SUPPORTED_API = 21
# Highest API level this release knows about.
MAX_KNOWN_API = 35


class Abi(enum.Enum):
    ARM64 = "arm64"
    ARMV7 = "armv7"
    X86 = "x86"
    X86_64 = "x86_64"

    def __str__(self):
        return self.value


AbiTarget = namedtuple("AbiTarget", ["abi", "triple", "ndk_triple", "apk_dir", "rust_triple"])
HostTag = namedtuple("HostTag", ["tag", "wrapper_suffix", "exe_suffix"])

_TARGETS = {
    Abi.ARM64: AbiTarget(Abi.ARM64, "aarch64-linux-android", "aarch64-linux-android", "arm64-v8a", "aarch64-linux-android"),
    Abi.ARMV7: AbiTarget(Abi.ARMV7, "armv7a-linux-androideabi", "arm-linux-androideabi", "armeabi-v7a", "armv7-linux-androideabi"),
    Abi.X86: AbiTarget(Abi.X86, "i686-linux-android", "i686-linux-android", "x86", "i686-linux-android"),
    Abi.X86_64: AbiTarget(Abi.X86_64, "x86_64-linux-android", "x86_64-linux-android", "x86_64", "x86_64-linux-android"),
}

# Accepted spellings: the identifier itself and the APK directory name.
_ALIASES = {}
for _target in _TARGETS.values():
    _ALIASES[_target.abi.value] = _target.abi
    _ALIASES[_target.apk_dir] = _target.abi

# (system, machine) -> HostTag
_HOST_TAGS = {
    ("linux", "x86_64"): HostTag("linux-x86_64", "", ""),
    ("linux", "amd64"): HostTag("linux-x86_64", "", ""),
    ("darwin", "x86_64"): HostTag("darwin-x86_64", "", ""),
    # NDKs ship universal macOS binaries under the x86_64 tag.
    ("darwin", "arm64"): HostTag("darwin-x86_64", "", ""),
    ("windows", "amd64"): HostTag("windows-x86_64", ".cmd", ".exe"),
    ("windows", "x86_64"): HostTag("windows-x86_64", ".cmd", ".exe"),
}


def parse_abi(value):
    """Return the Abi for an identifier or APK directory name."""
    if isinstance(value, Abi):
        return value
    try:
        return _ALIASES[value]
    except (KeyError, TypeError):
        raise UnsupportedAbi(value) from None


def all_abis():
    return list(Abi)


def target_for(abi):
    return _TARGETS[parse_abi(abi)]


def triple_for(abi):
    """Return the clang target triple for an ABI.

    >>> triple_for("arm64")
    'aarch64-linux-android'
    """
    return target_for(abi).triple


def apk_dir_for(abi):
    return target_for(abi).apk_dir


def default_min_api():
    return MIN_SUPPORTED_API


def max_known_api():
    return MAX_KNOWN_API


def validate_api_level(level):
    """Return level as an int, failing when it is outside the known range."""
    try:
        level = int(level)
    except (TypeError, ValueError):
        raise ApiLevelOutOfRange(level, MIN_SUPPORTED_API, MAX_KNOWN_API) from None
    if not MIN_SUPPORTED_API <= level <= MAX_KNOWN_API:
        raise ApiLevelOutOfRange(level, MIN_SUPPORTED_API, MAX_KNOWN_API)
    return level


def host_tag(system=None, machine=None):
    """Return the HostTag (prebuilt directory and file suffixes) for the build machine."""
    system = (system or platform.system()).lower()
    machine = (machine or platform.machine()).lower()
    try:
        return _HOST_TAGS[(system, machine)]
    except KeyError:
        raise UnsupportedHost(system, machine) from None
