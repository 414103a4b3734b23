"""Exception hierarchy for ndkpack.

Every failure raised by the library derives from NdkPackError so callers can
catch one type. Configuration errors are raised before any external process
runs; external tool errors keep the command and its output verbatim.
"""


class NdkPackError(Exception):
    """Base exception for all ndkpack errors."""


# -------------------- Configuration errors --------------------

class ConfigError(NdkPackError):
    """Raised when the project configuration file cannot be used."""


class InvalidInstallation(NdkPackError):
    def __init__(self, path, reason):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid installation at {path}: {reason}")


class UnsupportedAbi(NdkPackError):
    def __init__(self, abi):
        self.abi = abi
        super().__init__(f"Unsupported ABI: {abi!r}")


class UnsupportedHost(NdkPackError):
    def __init__(self, system, machine):
        self.system = system
        self.machine = machine
        super().__init__(f"No NDK prebuilt toolchain for host {system}/{machine}")


class ApiLevelOutOfRange(NdkPackError):
    def __init__(self, level, minimum, maximum):
        self.level = level
        self.minimum = minimum
        self.maximum = maximum
        super().__init__(f"API level {level} is outside the supported range [{minimum}, {maximum}]")


class ManifestError(NdkPackError):
    """Raised when a manifest or manifest override is invalid."""


class DuplicateComponent(ManifestError):
    def __init__(self, tag, name):
        self.tag = tag
        self.name = name
        super().__init__(f"Duplicate <{tag}> component named {name!r}")


class DuplicateLibrary(NdkPackError):
    def __init__(self, abi, file_name, paths=()):
        self.abi = abi
        self.file_name = file_name
        self.paths = tuple(paths)
        detail = f" ({', '.join(str(p) for p in self.paths)})" if self.paths else ""
        super().__init__(f"Duplicate library {file_name!r} for ABI {abi}{detail}")



class MissingArtifact(NdkPackError):
    def __init__(self, path):
        self.path = path
        super().__init__(f"Input file not found: {path}")


# -------------------- Resolution errors --------------------

class ToolMissing(NdkPackError):
    def __init__(self, path):
        self.path = path
        super().__init__(f"Required tool or file not found: {path}")


# -------------------- External process errors --------------------

class ExternalToolError(NdkPackError):
    def __init__(self, command, returncode, stdout="", stderr=""):
        self.command = list(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(
            f"Command failed (Exit Code: {returncode}): {' '.join(str(c) for c in self.command)}"
        )

    @property
    def output(self):
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


class SigningError(NdkPackError):
    def __init__(self, reason, command=None, output=""):
        self.reason = reason
        self.command = list(command) if command else None
        self.output = output
        super().__init__(f"Signing failed: {reason}")
