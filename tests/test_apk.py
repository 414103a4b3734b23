import os
import shutil
import tempfile
import unittest
import zipfile
from ndkpack import apk, archive, catalog, manifest, ndk
from ndkpack.apk import LibraryArtifact, PackageBuild
from ndkpack.errors import (
    ApiLevelOutOfRange, ConfigError, DuplicateLibrary, ExternalToolError, MissingArtifact, NdkPackError,
    SigningError,
)
from ndkpack.sdk import AndroidSdk
from ndkpack.signing import SigningKey
from fakes import FakeRunner, make_keystore, make_ndk, make_sdk


class TestPackageBuild(unittest.TestCase):

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.sdk = AndroidSdk.validate(make_sdk(os.path.join(self.test_dir, "sdk")), windows=False)
        self.ndk = ndk.validate(make_ndk(os.path.join(self.test_dir, "ndk")), system="Linux", machine="x86_64")
        self.key = SigningKey(make_keystore(os.path.join(self.test_dir, "release.jks")), "hunter2", "release")
        self.manifest = manifest.merge(
            manifest.default_for("com.example.demo"),
            manifest.ManifestOverrides(components=(manifest.native_activity("demo"),)),
        )
        self.libs = os.path.join(self.test_dir, "libs")
        self.runner = FakeRunner()

    def tearDown(self):
        shutil.rmtree(self.test_dir)

    def _lib(self, abi_dir, name="libdemo.so", data=b"\x7fELF"):
        path = os.path.join(self.libs, abi_dir, name)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(data + abi_dir.encode())
        return path

    def _build(self, build_name="build", **kwargs):
        kwargs.setdefault("runner", self.runner)
        kwargs.setdefault("ndk", self.ndk)
        return PackageBuild(self.manifest, self.sdk, os.path.join(self.test_dir, build_name), **kwargs)

    def test_build(self):
        build = self._build()
        build.add_library("arm64", self._lib("arm64-v8a"))
        build.add_library("x86_64", self._lib("x86_64"))
        path = build.build(self.key)

        self.assertEqual(path, build.apk_path())
        self.assertEqual(os.path.basename(path), "demo.apk")
        self.assertEqual(build.state, apk.SIGNED)
        self.assertEqual(self.runner.tools_run(), ["aapt", "apksigner"])
        self.assertFalse(os.path.exists(build.staging_dir))
        with zipfile.ZipFile(path) as zf:
            self.assertEqual(zf.namelist(), [
                "AndroidManifest.xml",
                "lib/arm64-v8a/libdemo.so",
                "lib/x86_64/libdemo.so",
                "resources.arsc",
            ])
            self.assertEqual(zf.getinfo("lib/x86_64/libdemo.so").compress_type, zipfile.ZIP_STORED)
            self.assertEqual(zf.getinfo("resources.arsc").compress_type, zipfile.ZIP_STORED)
            self.assertEqual(zf.getinfo("AndroidManifest.xml").compress_type, zipfile.ZIP_DEFLATED)
        self.assertEqual(archive.misaligned_entries(path), [])

    def test_aapt_and_apksigner_arguments(self):
        resources = os.path.join(self.test_dir, "res")
        os.makedirs(resources)
        build = self._build(resources=resources, disable_aapt_compression=True)
        build.build(self.key, os.path.join(self.test_dir, "out", "signed.apk"))
        aapt, apksigner = self.runner.commands
        self.assertEqual(aapt[1:3], ["package", "-f"])
        self.assertIn(self.sdk.android_jar(35), aapt)
        self.assertEqual(aapt[aapt.index("-S") + 1], resources)
        self.assertEqual(aapt[aapt.index("-0") + 1], "")
        self.assertNotIn("-A", aapt)
        self.assertEqual(apksigner[1], "sign")
        self.assertEqual(apksigner[apksigner.index("--ks-pass") + 1], "pass:hunter2")
        self.assertEqual(apksigner[apksigner.index("--ks-key-alias") + 1], "release")
        self.assertEqual(apksigner[apksigner.index("--min-sdk-version") + 1], "21")

    def test_builds_are_reproducible(self):
        outputs = []
        for name in ("first", "second"):
            build = self._build(build_name=name)
            build.add_library("arm64", self._lib("arm64-v8a"))
            build.add_library("armv7", self._lib("armeabi-v7a"))
            with open(build.build(self.key), "rb") as f:
                outputs.append(f.read())
        self.assertEqual(outputs[0], outputs[1])

    def test_duplicate_library(self):
        build = self._build()
        build.add_library("x86_64", self._lib("x86_64"))
        other = self._lib(os.path.join("other", "x86_64"))
        with self.assertRaises(DuplicateLibrary) as cm:
            build.add_library("x86_64", other)
        self.assertEqual(cm.exception.file_name, "libdemo.so")
        self.assertIs(cm.exception.abi, catalog.Abi.X86_64)

    def test_same_name_on_different_abis(self):
        build = self._build()
        build.add_library("arm64", self._lib("arm64-v8a"))
        build.add_library("x86", self._lib("x86"))
        self.assertEqual(len(build.libraries), 2)

    def test_missing_library(self):
        with self.assertRaises(MissingArtifact):
            self._build().add_library("arm64", os.path.join(self.libs, "nope.so"))

    def test_unknown_abi(self):
        with self.assertRaises(NdkPackError):
            self._build().add_library("mips", self._lib("mips"))

    def test_runtime_libs(self):
        self._lib("arm64-v8a", "libc++_shared.so")
        self._lib("arm64-v8a", "README.txt")
        build = self._build()
        added = build.add_runtime_libs(self.libs, "arm64")
        self.assertEqual([a.file_name for a in added], ["libc++_shared.so"])

    def test_aapt_failure_leaves_no_output(self):
        runner = FakeRunner(fail="aapt", stderr="error: resource not found")
        build = self._build(runner=runner)
        with self.assertRaises(ExternalToolError) as cm:
            build.build(self.key)
        self.assertIn("resource not found", cm.exception.stderr)
        self.assertEqual(cm.exception.returncode, 1)
        self.assertFalse(os.path.exists(build.apk_path()))
        # Staging is kept for inspection.
        self.assertTrue(os.path.isdir(build.staging_dir))

    def test_signing_failure_leaves_no_output(self):
        runner = FakeRunner(fail="apksigner", stderr="Failed to load signer \"signer #1\"\nmore detail")
        build = self._build(runner=runner)
        build.add_library("arm64", self._lib("arm64-v8a"))
        with self.assertRaises(SigningError) as cm:
            build.build(self.key)
        self.assertEqual(cm.exception.reason, 'Failed to load signer "signer #1"')
        self.assertNotIn("hunter2", " ".join(cm.exception.command))
        self.assertEqual(os.listdir(os.path.dirname(build.apk_path())), [os.path.basename(build.staging_dir)])

    def test_missing_keystore_fails_before_running_tools(self):
        build = self._build()
        with self.assertRaises(SigningError):
            build.build(SigningKey(os.path.join(self.test_dir, "missing.jks"), "pw"))
        self.assertEqual(self.runner.commands, [])

    def test_stages_run_in_order(self):
        build = self._build()
        with self.assertRaises(NdkPackError):
            build.sign(self.key)
        build.assemble()
        self.assertEqual(build.state, apk.ASSEMBLED)
        with self.assertRaises(NdkPackError):
            build.add_library("arm64", self._lib("arm64-v8a"))
        with self.assertRaises(NdkPackError):
            build.assemble()

    def test_min_sdk_outside_ndk_range(self):
        self.manifest = manifest.merge(self.manifest, manifest.ManifestOverrides(min_sdk=19))
        with self.assertRaises(ApiLevelOutOfRange):
            self._build()
        with self.assertRaises(ApiLevelOutOfRange):
            self._build(ndk=None)

    def test_configuration_errors(self):
        with self.assertRaises(ConfigError):
            self._build(strip="everything")
        with self.assertRaises(ConfigError):
            self._build(so_alignment=3)
        with self.assertRaises(ConfigError):
            self._build(assets=os.path.join(self.test_dir, "no-assets"))
        with self.assertRaises(ConfigError):
            self._build(ndk=None, strip=apk.STRIP)

    def test_strip_split(self):
        build = self._build(strip=apk.STRIP_SPLIT)
        build.add_library("arm64", self._lib("arm64-v8a"))
        build.build(self.key)
        self.assertEqual(self.runner.tools_run(), ["aapt", "llvm-objcopy", "llvm-objcopy", "llvm-objcopy", "apksigner"])
        self.assertTrue(os.path.isfile(os.path.join(build.build_dir, "debug", "arm64-v8a", "libdemo.dwarf")))

    def test_keep_staging(self):
        build = self._build(keep_staging=True)
        build.build(self.key)
        self.assertTrue(os.path.isfile(build.unsigned_apk))


class TestPlaceLibraries(unittest.TestCase):

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.test_dir)

    def test_duplicates_rejected_before_copying(self):
        installed = []
        artifacts = [
            LibraryArtifact(catalog.Abi.X86_64, "/a/libfoo.so"),
            LibraryArtifact(catalog.Abi.X86_64, "/b/libfoo.so"),
        ]
        with self.assertRaises(DuplicateLibrary):
            apk.place_libraries(artifacts, self.test_dir, install=lambda s, d: installed.append(d))
        self.assertEqual(installed, [])

    def test_archive_paths(self):
        installed = []
        artifacts = [
            LibraryArtifact(catalog.Abi.ARMV7, "/a/libfoo.so"),
            LibraryArtifact(catalog.Abi.ARM64, "/b/libfoo.so"),
        ]
        placed = apk.place_libraries(artifacts, self.test_dir, install=lambda s, d: installed.append(d))
        self.assertEqual(sorted(placed), ["lib/arm64-v8a/libfoo.so", "lib/armeabi-v7a/libfoo.so"])
        self.assertEqual(len(installed), 2)


if __name__ == "__main__":
    unittest.main()
