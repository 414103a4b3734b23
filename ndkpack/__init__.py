from .catalog import Abi, default_min_api, max_known_api, parse_abi, triple_for
from .errors import NdkPackError
from .manifest import Manifest, ManifestOverrides, default_for, merge, to_xml
from .ndk import NdkInstallation, ToolchainPaths, locate_ndk, resolve_toolchain, validate
from .apk import LibraryArtifact, PackageBuild
from .sdk import AndroidSdk
from .signing import SigningKey

__version__ = "0.1.0"
