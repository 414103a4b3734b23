"""Locate and validate an Android NDK, and derive per-ABI toolchain settings.

NdkInstallation values are obtained from validate() (or locate_ndk(), which
calls it). resolve_toolchain() still checks every tool it returns on disk, so
an installation built by hand around an unchecked root fails with ToolMissing
rather than yielding paths that do not exist.
"""
import json
import os
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional

from packaging.version import InvalidVersion, parse as parse_version

from . import catalog
from .cli_logger import logger
from .errors import ApiLevelOutOfRange, ConfigError, InvalidInstallation, ToolMissing

SOURCE_PROPERTIES = "source.properties"
PLATFORMS_JSON = os.path.join("meta", "platforms.json")
PREBUILT_DIR = os.path.join("toolchains", "llvm", "prebuilt")

API_POLICY_CLAMP = "clamp"
API_POLICY_STRICT = "strict"
API_POLICIES = (API_POLICY_CLAMP, API_POLICY_STRICT)

_REVISION_RE = re.compile(r"^(\d+)\.(\d+)\.(\d+)(?:-beta(\d+))?$")


@dataclass(frozen=True)
class NdkVersion:
    major: int
    minor: int
    patch: int
    beta: Optional[int] = None

    @classmethod
    def parse(cls, text):
        match = _REVISION_RE.match(text.strip())
        if not match:
            raise ValueError(f"Malformed NDK revision: {text!r}")
        major, minor, patch, beta = match.groups()
        return cls(int(major), int(minor), int(patch), int(beta) if beta is not None else None)

    def _key(self):
        # A beta sorts before the final release of the same revision.
        return (self.major, self.minor, self.patch, self.beta is None, self.beta or 0)

    def __lt__(self, other):
        return self._key() < other._key()

    def __le__(self, other):
        return self._key() <= other._key()

    def __gt__(self, other):
        return self._key() > other._key()

    def __ge__(self, other):
        return self._key() >= other._key()

    def __str__(self):
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.beta is not None:
            text += f"-beta{self.beta}"
        return text


@dataclass(frozen=True)
class NdkInstallation:
    """A validated NDK. Build it with validate() or locate_ndk(), not directly."""
    root: str
    version: NdkVersion
    host: catalog.HostTag
    platform_min: Optional[int] = None
    platform_max: Optional[int] = None

    @property
    def prebuilt_dir(self):
        return os.path.join(self.root, PREBUILT_DIR, self.host.tag)

    @property
    def bin_dir(self):
        return os.path.join(self.prebuilt_dir, "bin")

    @property
    def sysroot(self):
        return os.path.join(self.prebuilt_dir, "sysroot")

    def api_range(self):
        """The usable API range: the catalog range narrowed by what this NDK advertises."""
        low = catalog.default_min_api()
        high = catalog.max_known_api()
        if self.platform_min is not None:
            low = max(low, self.platform_min)
        if self.platform_max is not None:
            high = min(high, self.platform_max)
        return low, high


@dataclass(frozen=True)
class ApiResolution:
    requested: int
    level: int
    clamped: bool


@dataclass(frozen=True)
class ToolchainPaths:
    target: catalog.AbiTarget
    api: int
    requested_api: int
    clamped: bool
    cc: str
    cxx: str
    ar: str
    ranlib: str
    linker: str
    sysroot: str
    bin_dir: str
    env: dict = field(default_factory=dict, hash=False)

    def as_environ(self, base=None):
        """Merge the toolchain variables into a copy of base (default: os.environ)."""
        environ = dict(os.environ if base is None else base)
        environ.update(self.env)
        path = environ.get("PATH")
        environ["PATH"] = f"{self.bin_dir}{os.pathsep}{path}" if path else self.bin_dir
        return environ


# -------------------- Validation --------------------

def _read_revision(path):
    properties = os.path.join(path, SOURCE_PROPERTIES)
    try:
        with open(properties, "r") as f:
            for line in f:
                key, sep, value = line.partition("=")
                if sep and key.strip() == "Pkg.Revision":
                    return NdkVersion.parse(value)
    except ValueError as e:
        raise InvalidInstallation(path, f"{SOURCE_PROPERTIES}: {e}") from None
    except OSError as e:
        raise InvalidInstallation(path, f"cannot read {SOURCE_PROPERTIES}: {e}") from None
    raise InvalidInstallation(path, f"{SOURCE_PROPERTIES} has no Pkg.Revision entry")


def _read_platforms(path):
    platforms = os.path.join(path, PLATFORMS_JSON)
    if not os.path.isfile(platforms):
        return None, None
    try:
        with open(platforms, "r") as f:
            data = json.load(f)
        return int(data["min"]), int(data["max"])
    except (OSError, ValueError, KeyError, TypeError) as e:
        raise InvalidInstallation(path, f"malformed {PLATFORMS_JSON}: {e}") from None


def validate(path, system=None, machine=None):
    """Check that path is a real NDK and return an NdkInstallation.

    Raises InvalidInstallation when the marker files are missing or the
    version metadata cannot be parsed.
    """
    if not path or not os.path.isdir(path):
        raise InvalidInstallation(path, "not a directory")
    root = os.path.abspath(path)
    if not os.path.isfile(os.path.join(root, SOURCE_PROPERTIES)):
        raise InvalidInstallation(root, f"{SOURCE_PROPERTIES} not found")
    if not os.path.isdir(os.path.join(root, PREBUILT_DIR)):
        raise InvalidInstallation(root, f"{PREBUILT_DIR} not found")

    version = _read_revision(root)
    platform_min, platform_max = _read_platforms(root)
    host = catalog.host_tag(system, machine)
    installation = NdkInstallation(root, version, host, platform_min, platform_max)
    logger.info(f"Using NDK {version} at {root} (host {host.tag})")
    return installation


def _highest_version_dir(parent):
    candidates = []
    for name in os.listdir(parent):
        if not os.path.isdir(os.path.join(parent, name)):
            continue
        try:
            candidates.append((parse_version(name), name))
        except InvalidVersion:
            continue
    if not candidates:
        return None
    return os.path.join(parent, max(candidates)[1])


def locate_ndk(environ=None, system=None, machine=None):
    """Find an installed NDK from the usual environment variables and validate it."""
    environ = os.environ if environ is None else environ
    for var in ("ANDROID_NDK_ROOT", "ANDROID_NDK_HOME", "NDK_HOME"):
        path = environ.get(var)
        if path:
            logger.info(f"  - NDK from ${var}: {path}")
            return validate(path, system, machine)

    for var in ("ANDROID_HOME", "ANDROID_SDK_ROOT"):
        sdk = environ.get(var)
        if not sdk:
            continue
        bundle = os.path.join(sdk, "ndk-bundle")
        if os.path.isdir(bundle):
            return validate(bundle, system, machine)
        ndk_dir = os.path.join(sdk, "ndk")
        if os.path.isdir(ndk_dir):
            newest = _highest_version_dir(ndk_dir)
            if newest:
                return validate(newest, system, machine)

    raise InvalidInstallation(None, "no NDK found; set ANDROID_NDK_ROOT or ANDROID_HOME")


# -------------------- Resolution --------------------

def clamp_api(installation, requested, policy=API_POLICY_CLAMP):
    """Fit requested into the installation's usable API range.

    With the clamp policy the adjustment is reported through ``clamped``;
    with the strict policy an out-of-range request raises ApiLevelOutOfRange.
    """
    if policy not in API_POLICIES:
        raise ConfigError(f"Unknown API policy {policy!r}; expected one of {API_POLICIES}")
    low, high = installation.api_range()
    if isinstance(requested, bool):
        raise ApiLevelOutOfRange(requested, low, high)
    try:
        requested = int(requested)
    except (TypeError, ValueError):
        raise ApiLevelOutOfRange(requested, low, high) from None
    level = min(max(requested, low), high)
    if level != requested:
        if policy == API_POLICY_STRICT:
            raise ApiLevelOutOfRange(requested, low, high)
        logger.warning(f"API level {requested} is outside [{low}, {high}]; using {level}.")
    return ApiResolution(requested, level, level != requested)


def _require(path):
    if not os.path.exists(path):
        raise ToolMissing(path)
    return path


def tool_path(installation, name):
    """Path of an LLVM tool such as llvm-objcopy in the NDK toolchain."""
    return _require(os.path.join(installation.bin_dir, f"{name}{installation.host.exe_suffix}"))


def _env_key(triple):
    return triple.replace("-", "_")


def _environment(target, api, cc, cxx, ar, ranlib, sysroot):
    scoped = _env_key(target.rust_triple)
    return {
        "CC": cc,
        "CXX": cxx,
        "AR": ar,
        "LD": cc,
        "RANLIB": ranlib,
        "SYSROOT": sysroot,
        "ANDROID_API": str(api),
        "CFLAGS": "-fPIC -DANDROID",
        "LDFLAGS": f"-L{sysroot}/usr/lib/{target.ndk_triple}/{api}",
        f"CC_{scoped}": cc,
        f"CXX_{scoped}": cxx,
        f"AR_{scoped}": ar,
        f"CARGO_TARGET_{scoped.upper()}_LINKER": cc,
    }


def resolve_toolchain(installation, abi, requested_api, policy=API_POLICY_CLAMP):
    """Derive compiler, archiver, linker and sysroot for one ABI and API level.

    Only the tools for this ABI are checked on disk, so a partial NDK can
    still serve the ABIs it has. The result depends only on the arguments.
    """
    resolution = clamp_api(installation, requested_api, policy)
    target = catalog.target_for(abi)
    api = resolution.level

    bin_dir = installation.bin_dir
    suffix = installation.host.wrapper_suffix
    exe = installation.host.exe_suffix
    cc = _require(os.path.join(bin_dir, f"{target.triple}{api}-clang{suffix}"))
    cxx = _require(os.path.join(bin_dir, f"{target.triple}{api}-clang++{suffix}"))
    ar = _require(os.path.join(bin_dir, f"llvm-ar{exe}"))
    ranlib = _require(os.path.join(bin_dir, f"llvm-ranlib{exe}"))
    sysroot = _require(installation.sysroot)

    return ToolchainPaths(
        target=target,
        api=api,
        requested_api=resolution.requested,
        clamped=resolution.clamped,
        cc=cc,
        cxx=cxx,
        ar=ar,
        ranlib=ranlib,
        linker=cc,
        sysroot=sysroot,
        bin_dir=bin_dir,
        env=_environment(target, api, cc, cxx, ar, ranlib, sysroot),
    )


def resolve_all(installation, abis, requested_api, policy=API_POLICY_CLAMP, max_workers=None):
    """Resolve several ABIs concurrently. Returns {Abi: ToolchainPaths}."""
    abis = [catalog.parse_abi(abi) for abi in abis]
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {
            abi: executor.submit(resolve_toolchain, installation, abi, requested_api, policy)
            for abi in abis
        }
        return {abi: future.result() for abi, future in futures.items()}
