from .build import build
from .manifest import manifest
from .ndk_info import ndk_info
from .toolchain import toolchain
