"""APK assembly: manifest, resources, native libraries, archive and signature.

A PackageBuild moves through three states. ``assemble()`` runs the manifest,
resource, placement and archive stages inside a fresh staging directory and
``sign()`` produces the final file, which only appears at the output path
once every stage has succeeded.
"""
import os
import shutil
import zipfile
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from . import archive, catalog, manifest as manifest_mod, ndk as ndk_mod, signing
from .cli_logger import logger
from .errors import ConfigError, DuplicateLibrary, ExternalToolError, MissingArtifact, NdkPackError
from .utils import ToolRunner, atomic_output, create_staging_dir, ensure_dir, remove_tree, safe_join

STRIP_DEFAULT = "default"
STRIP = "strip"
STRIP_SPLIT = "split"
STRIP_MODES = (STRIP_DEFAULT, STRIP, STRIP_SPLIT)

CONFIGURED = "configured"
ASSEMBLED = "assembled"
SIGNED = "signed"

NATIVE_LIB_ROOT = "lib"
RESOURCE_ARCHIVE = "resources.ap_"
PACKAGE_TREE = "apk"


@dataclass(frozen=True)
class LibraryArtifact:
    abi: catalog.Abi
    path: str

    @property
    def file_name(self):
        return os.path.basename(self.path)

    @property
    def archive_path(self):
        return f"{NATIVE_LIB_ROOT}/{catalog.apk_dir_for(self.abi)}/{self.file_name}"


def check_unique(artifacts):
    """Raise DuplicateLibrary if two artifacts share an ABI and file name."""
    seen = {}
    for artifact in artifacts:
        key = (artifact.abi, artifact.file_name)
        if key in seen:
            raise DuplicateLibrary(artifact.abi, artifact.file_name, (seen[key].path, artifact.path))
        seen[key] = artifact


def _copy_library(source, destination):
    shutil.copyfile(source, destination)


def place_libraries(artifacts, tree, install=_copy_library, max_workers=None):
    """Put every artifact at <tree>/lib/<abi-dir>/<name>, one worker per ABI.

    Duplicates are rejected before anything is copied.
    """
    artifacts = list(artifacts)
    check_unique(artifacts)
    by_abi = {}
    for artifact in artifacts:
        by_abi.setdefault(artifact.abi, []).append(artifact)

    def _place_abi(abi, items):
        abi_dir = ensure_dir(os.path.join(tree, NATIVE_LIB_ROOT, catalog.apk_dir_for(abi)))
        placed = []
        for artifact in items:
            destination = safe_join(abi_dir, artifact.file_name)
            if os.path.exists(destination):
                raise DuplicateLibrary(abi, artifact.file_name, (destination, artifact.path))
            install(artifact.path, destination)
            logger.step_info(f"{artifact.archive_path} <- {artifact.path}", indent=4)
            placed.append(artifact.archive_path)
        return placed

    placed = []
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [
            executor.submit(_place_abi, abi, items)
            for abi, items in sorted(by_abi.items(), key=lambda item: item[0].value)
        ]
        # Join point: archive construction needs the complete tree.
        for future in futures:
            placed.extend(future.result())
    return placed


class PackageBuild:
    """One APK build: configured -> assembled -> signed.

    ``sdk`` supplies aapt, apksigner and android.jar. ``ndk`` is optional and
    used to check the manifest's minimum API level against the NDK, and for
    llvm-objcopy when stripping. ``runner`` runs external tools and can be
    swapped for a fake in tests.
    """

    def __init__(self, manifest, sdk, build_dir, apk_name=None, resources=None, assets=None,
                 ndk=None, runner=None, strip=STRIP_DEFAULT, compress_native_libs=False,
                 disable_aapt_compression=False, so_alignment=archive.DEFAULT_ALIGNMENT,
                 keep_staging=False, max_workers=None):
        if strip not in STRIP_MODES:
            raise ConfigError(f"Unknown strip mode {strip!r}; expected one of {STRIP_MODES}")
        if so_alignment < 1 or so_alignment & (so_alignment - 1):
            raise ConfigError(f"so_alignment must be a power of two, got {so_alignment}")
        for label, path in (("resource", resources), ("asset", assets)):
            if path is not None and not os.path.isdir(path):
                raise ConfigError(f"The {label} directory {path} does not exist")

        self.manifest = manifest
        self.sdk = sdk
        self.ndk = ndk
        self.build_dir = os.path.abspath(build_dir)
        self.apk_name = apk_name or manifest.package.rsplit(".", 1)[-1]
        self.resources = resources
        self.assets = assets
        self.runner = runner or ToolRunner()
        self.strip = strip
        self.compress_native_libs = compress_native_libs
        self.disable_aapt_compression = disable_aapt_compression
        self.so_alignment = so_alignment
        self.keep_staging = keep_staging
        self.max_workers = max_workers

        self.libraries = []
        self.staging_dir = None
        self.unsigned_apk = None
        self.state = CONFIGURED

        self._check_api_level()
        self._objcopy = None
        if strip != STRIP_DEFAULT:
            if ndk is None:
                raise ConfigError(f"strip mode {strip!r} needs an NDK installation for llvm-objcopy")
            self._objcopy = ndk_mod.tool_path(ndk, "llvm-objcopy")

    def _check_api_level(self):
        if self.ndk is not None:
            ndk_mod.clamp_api(self.ndk, self.manifest.min_sdk, ndk_mod.API_POLICY_STRICT)
        else:
            catalog.validate_api_level(self.manifest.min_sdk)

    def apk_path(self):
        """Default location of the signed APK."""
        return os.path.join(self.build_dir, f"{self.apk_name}.apk")

    # -------------------- Configuration --------------------

    def add_library(self, abi, path):
        self._require_state(CONFIGURED)
        artifact = LibraryArtifact(catalog.parse_abi(abi), os.path.abspath(path))
        if not os.path.isfile(artifact.path):
            raise MissingArtifact(artifact.path)
        check_unique(self.libraries + [artifact])
        self.libraries.append(artifact)
        return artifact

    def add_runtime_libs(self, directory, abi):
        """Add every .so in <directory>/<abi-dir>/, e.g. prebuilt libc++_shared.so."""
        abi = catalog.parse_abi(abi)
        abi_dir = os.path.join(directory, catalog.apk_dir_for(abi))
        if not os.path.isdir(abi_dir):
            raise MissingArtifact(abi_dir)
        added = []
        for name in sorted(os.listdir(abi_dir)):
            if name.endswith(".so"):
                added.append(self.add_library(abi, os.path.join(abi_dir, name)))
        return added

    def _require_state(self, expected):
        if self.state != expected:
            raise NdkPackError(f"Package build is {self.state}, expected {expected}")

    # -------------------- Stages --------------------

    def _emit_manifest(self):
        path = manifest_mod.write_to(self.manifest, self.staging_dir)
        logger.info(f"  - Wrote {path}")
        return path

    def _compile_resources(self, manifest_path):
        output = os.path.join(self.staging_dir, RESOURCE_ARCHIVE)
        aapt = self.sdk.build_tool("aapt")
        command = [
            aapt, "package", "-f",
            "-F", output,
            "-M", manifest_path,
            "-I", self.sdk.android_jar(self.manifest.target_sdk),
        ]
        if self.disable_aapt_compression:
            command += ["-0", ""]
        if self.resources:
            command += ["-S", os.path.abspath(self.resources)]
        if self.assets:
            command += ["-A", os.path.abspath(self.assets)]

        logger.command(command)
        stdout, stderr, returncode = self.runner.run(command, cwd=self.staging_dir)
        if returncode != 0:
            logger.error(f"aapt failed (Exit Code: {returncode}):")
            if stdout:
                logger.error(f"Stdout:\n{stdout}")
            if stderr:
                logger.error(f"Stderr:\n{stderr}")
            raise ExternalToolError(command, returncode, stdout, stderr)
        if not os.path.isfile(output):
            raise ExternalToolError(command, returncode, stdout, f"aapt did not produce {output}")
        return output

    def _unpack_resources(self, resource_archive, tree):
        """Extract the compiled resources into tree and return the names aapt stored uncompressed."""
        stored = set()
        with zipfile.ZipFile(resource_archive) as zf:
            for info in zf.infolist():
                if info.is_dir():
                    continue
                target = safe_join(tree, info.filename)
                ensure_dir(os.path.dirname(target))
                with zf.open(info) as src, open(target, "wb") as out:
                    shutil.copyfileobj(src, out)
                if info.compress_type == zipfile.ZIP_STORED:
                    stored.add(info.filename)
        return stored

    def _run_objcopy(self, *args):
        command = [self._objcopy] + [str(a) for a in args]
        logger.command(command)
        stdout, stderr, returncode = self.runner.run(command)
        if returncode != 0:
            raise ExternalToolError(command, returncode, stdout, stderr)

    def _install_library(self, source, destination):
        if self.strip == STRIP_DEFAULT:
            _copy_library(source, destination)
            return
        self._run_objcopy("--strip-debug", source, destination)
        if self.strip == STRIP_SPLIT:
            abi_dir = os.path.basename(os.path.dirname(destination))
            debug_dir = ensure_dir(os.path.join(self.build_dir, "debug", abi_dir))
            stem = os.path.splitext(os.path.basename(destination))[0]
            dwarf = os.path.join(debug_dir, f"{stem}.dwarf")
            self._run_objcopy("--only-keep-debug", source, dwarf)
            self._run_objcopy(f"--add-gnu-debuglink={dwarf}", destination)

    def assemble(self):
        """Run stages 1-4 and return the path of the unsigned, aligned archive."""
        self._require_state(CONFIGURED)
        logger.info(f"Assembling {self.apk_name}.apk ({self.manifest.package})...")
        self.staging_dir = create_staging_dir(self.build_dir, self.apk_name)

        manifest_path = self._emit_manifest()
        logger.info("  - Compiling resources...")
        resource_archive = self._compile_resources(manifest_path)

        tree = ensure_dir(os.path.join(self.staging_dir, PACKAGE_TREE))
        stored = self._unpack_resources(resource_archive, tree)

        logger.info(f"  - Placing {len(self.libraries)} native libraries...")
        place_libraries(self.libraries, tree, install=self._install_library, max_workers=self.max_workers)

        entries = archive.plan_entries(
            tree,
            stored_names=stored,
            compress_native_libs=self.compress_native_libs,
            compress=not self.disable_aapt_compression,
            so_alignment=self.so_alignment,
        )
        unsigned = os.path.join(self.staging_dir, f"{self.apk_name}-unsigned.apk")
        archive.write_archive(unsigned, entries)

        self.unsigned_apk = unsigned
        self.state = ASSEMBLED
        logger.success(f"  - Unsigned archive ready at {unsigned}")
        return unsigned

    def sign(self, key, output=None):
        """Sign the assembled archive and move it to output atomically."""
        self._require_state(ASSEMBLED)
        output = os.path.abspath(output or self.apk_path())
        logger.info(f"  - Signing with {key.path}...")
        with atomic_output(output) as temp_path:
            signing.sign_apk(
                self.sdk, self.runner, key, self.unsigned_apk, temp_path, min_sdk=self.manifest.min_sdk
            )
        self.state = SIGNED
        logger.success(f"APK available at {output}")
        return output

    def build(self, key, output=None):
        """Run the full pipeline. The staging directory is kept if any stage fails."""
        key.check()
        self.assemble()
        path = self.sign(key, output)
        if not self.keep_staging:
            remove_tree(self.staging_dir)
        return path
