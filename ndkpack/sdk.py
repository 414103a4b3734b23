import os
import re

from packaging.version import InvalidVersion, parse as parse_version

from .cli_logger import logger
from .errors import InvalidInstallation, ToolMissing

_PLATFORM_RE = re.compile(r"^android-(\d+)$")

# Tools shipped as shell/batch wrappers rather than native executables.
_SCRIPT_TOOLS = {"apksigner", "d8", "lint"}


class AndroidSdk:
    """A validated Android SDK root with at least one build-tools version."""

    def __init__(self, root, build_tools_version, platforms, windows=None):
        self.root = root
        self.build_tools_version = build_tools_version
        self.platforms = sorted(platforms)
        self.windows = os.name == "nt" if windows is None else windows

    @classmethod
    def validate(cls, path, windows=None):
        if not path or not os.path.isdir(path):
            raise InvalidInstallation(path, "not a directory")
        root = os.path.abspath(path)

        build_tools_dir = os.path.join(root, "build-tools")
        if not os.path.isdir(build_tools_dir):
            raise InvalidInstallation(root, "build-tools not found")
        versions = []
        for name in os.listdir(build_tools_dir):
            try:
                versions.append((parse_version(name), name))
            except InvalidVersion:
                logger.debug(f"  - Ignoring build-tools entry {name}")
        if not versions:
            raise InvalidInstallation(root, "no build-tools version installed")

        platforms_dir = os.path.join(root, "platforms")
        if not os.path.isdir(platforms_dir):
            raise InvalidInstallation(root, "platforms not found")
        platforms = []
        for name in os.listdir(platforms_dir):
            match = _PLATFORM_RE.match(name)
            if match:
                platforms.append(int(match.group(1)))

        build_tools_version = max(versions)[1]
        logger.info(f"Using Android SDK at {root} (build-tools {build_tools_version})")
        return cls(root, build_tools_version, platforms, windows=windows)

    @classmethod
    def locate(cls, environ=None, windows=None):
        environ = os.environ if environ is None else environ
        for var in ("ANDROID_HOME", "ANDROID_SDK_ROOT"):
            path = environ.get(var)
            if path:
                return cls.validate(path, windows=windows)
        raise InvalidInstallation(None, "no Android SDK found; set ANDROID_HOME")

    @property
    def build_tools_dir(self):
        return os.path.join(self.root, "build-tools", self.build_tools_version)

    def build_tool(self, name):
        """Path of a build-tools executable such as aapt or apksigner."""
        if self.windows:
            name += ".bat" if name in _SCRIPT_TOOLS else ".exe"
        path = os.path.join(self.build_tools_dir, name)
        if not os.path.exists(path):
            raise ToolMissing(path)
        return path

    def android_jar(self, api):
        path = os.path.join(self.root, "platforms", f"android-{api}", "android.jar")
        if not os.path.exists(path):
            raise ToolMissing(path)
        return path

    def default_target_platform(self):
        if not self.platforms:
            raise InvalidInstallation(self.root, "no platforms installed")
        return self.platforms[-1]
