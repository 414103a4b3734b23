import os

from . import catalog, ndk as ndk_mod
from .apk import PackageBuild, STRIP_DEFAULT
from .cli_logger import logger
from .config import get_table
from .errors import ConfigError
from .manifest import ManifestOverrides, default_for, merge, native_activity
from .sdk import AndroidSdk
from .signing import SigningKey

DEFAULT_ABIS = ["arm64", "armv7"]


def _project_path(project_dir, value):
    if value is None:
        return None
    return value if os.path.isabs(value) else os.path.join(project_dir, value)


def resolve_ndk(config, project_dir="."):
    """Validate the NDK named in [android] ndk_path, or locate one from the environment."""
    android_cfg = get_table(config, "android")
    ndk_path = _project_path(project_dir, android_cfg.get("ndk_path"))
    if ndk_path:
        return ndk_mod.validate(ndk_path)
    return ndk_mod.locate_ndk()


def resolve_sdk(config, project_dir="."):
    android_cfg = get_table(config, "android")
    sdk_path = _project_path(project_dir, android_cfg.get("sdk_path"))
    if sdk_path:
        return AndroidSdk.validate(sdk_path)
    return AndroidSdk.locate()


def configured_abis(config):
    android_cfg = get_table(config, "android")
    abis = android_cfg.get("abis", DEFAULT_ABIS)
    if not isinstance(abis, list) or not abis:
        raise ConfigError("[android] abis must be a non-empty list")
    return [catalog.parse_abi(abi) for abi in abis]


def resolve_toolchains(config, installation):
    """Resolve the toolchain for every configured ABI. Returns {Abi: ToolchainPaths}."""
    android_cfg = get_table(config, "android")
    api_level = android_cfg.get("api_level", catalog.default_min_api())
    policy = android_cfg.get("api_policy", ndk_mod.API_POLICY_CLAMP)
    if policy not in ndk_mod.API_POLICIES:
        raise ConfigError(f"[android] api_policy must be one of {ndk_mod.API_POLICIES}")
    toolchains = ndk_mod.resolve_all(installation, configured_abis(config), api_level, policy)
    for abi, paths in toolchains.items():
        note = f" (clamped from {paths.requested_api})" if paths.clamped else ""
        logger.info(f"  - {abi}: {paths.target.triple} API {paths.api}{note}")
    return toolchains


def manifest_from_config(config):
    manifest_cfg = dict(get_table(config, "manifest"))
    package = manifest_cfg.pop("package", None)
    if not package:
        raise ConfigError("[manifest] package is required")
    base = default_for(package)
    result = merge(base, ManifestOverrides.from_dict(manifest_cfg))

    lib_name = get_table(config, "apk").get("native_activity")
    if lib_name:
        result = merge(result, ManifestOverrides(components=(native_activity(lib_name),)))
    return result


def signing_key_from_config(config, project_dir="."):
    signing_cfg = get_table(config, "signing")
    if not signing_cfg or signing_cfg.get("debug"):
        return SigningKey.debug()
    key = SigningKey.from_config(signing_cfg)
    key.path = _project_path(project_dir, key.path)
    return key


def build_apk(config, project_dir=".", output=None, runner=None):
    """Build and sign the APK described by config. Returns the output path."""
    logger.info("Building Android package...")
    apk_cfg = get_table(config, "apk")
    libraries = get_table(apk_cfg, "libraries")

    manifest = manifest_from_config(config)
    sdk = resolve_sdk(config, project_dir)
    installation = resolve_ndk(config, project_dir)
    key = signing_key_from_config(config, project_dir)

    build = PackageBuild(
        manifest,
        sdk,
        _project_path(project_dir, apk_cfg.get("build_dir", "build")),
        apk_name=apk_cfg.get("name"),
        resources=_project_path(project_dir, apk_cfg.get("resources")),
        assets=_project_path(project_dir, apk_cfg.get("assets")),
        ndk=installation,
        runner=runner,
        strip=apk_cfg.get("strip", STRIP_DEFAULT),
        compress_native_libs=apk_cfg.get("compress_native_libs", False),
        disable_aapt_compression=apk_cfg.get("disable_aapt_compression", False),
        so_alignment=apk_cfg.get("so_alignment", 4),
        keep_staging=apk_cfg.get("keep_staging", False),
    )
    for abi, paths in sorted(libraries.items()):
        if isinstance(paths, str):
            paths = [paths]
        for path in paths:
            build.add_library(abi, _project_path(project_dir, path))

    runtime_libs = _project_path(project_dir, apk_cfg.get("runtime_libs"))
    if runtime_libs:
        for abi in sorted({artifact.abi for artifact in build.libraries}, key=lambda a: a.value):
            if os.path.isdir(os.path.join(runtime_libs, catalog.apk_dir_for(abi))):
                build.add_runtime_libs(runtime_libs, abi)

    output = output or _project_path(project_dir, apk_cfg.get("output"))
    return build.build(key, output)
