import os

from .cli_logger import logger
from .errors import SigningError, ToolMissing

DEBUG_KEYSTORE_PASSWORD = "android"
DEBUG_KEY_ALIAS = "androiddebugkey"


class SigningKey:
    """Keystore credentials used to sign an APK. Keys are never generated here."""

    def __init__(self, path, password, alias=None, key_password=None):
        self.path = path
        self.password = password
        self.alias = alias
        self.key_password = key_password

    @classmethod
    def debug(cls, home=None):
        """The Android debug keystore, if one exists in ~/.android."""
        home = home or os.path.expanduser("~")
        path = os.path.join(home, ".android", "debug.keystore")
        return cls(path, DEBUG_KEYSTORE_PASSWORD, DEBUG_KEY_ALIAS)

    @classmethod
    def from_config(cls, table):
        try:
            return cls(table["keystore"], table["password"], table.get("alias"), table.get("key_password"))
        except KeyError as e:
            raise SigningError(f"missing {e.args[0]!r} in [signing] configuration") from None

    def check(self):
        if not self.path or not os.path.isfile(self.path):
            raise SigningError(f"keystore not found: {self.path}")
        if not self.password:
            raise SigningError(f"no password given for keystore {self.path}")

    def secrets(self):
        return tuple(s for s in (self.password, self.key_password) if s)

    def __repr__(self):
        return f"SigningKey(path={self.path!r}, alias={self.alias!r})"


def _mask(command, secrets):
    masked = []
    for arg in command:
        arg = str(arg)
        for secret in secrets:
            arg = arg.replace(secret, "****")
        masked.append(arg)
    return masked


def _failure_reason(stdout, stderr, returncode):
    for text in (stderr, stdout):
        for line in (text or "").splitlines():
            if line.strip():
                return line.strip()
    return f"apksigner exited with code {returncode}"


def sign_apk(sdk, runner, key, unsigned_apk, output, min_sdk=None):
    """Sign unsigned_apk with apksigner, writing the result to output.

    The command in a SigningError has passwords masked; its output is kept
    verbatim.
    """
    key.check()
    try:
        apksigner = sdk.build_tool("apksigner")
    except ToolMissing as e:
        raise SigningError(f"apksigner not available: {e.path}") from e

    command = [apksigner, "sign", "--ks", key.path, "--ks-pass", f"pass:{key.password}"]
    if key.alias:
        command += ["--ks-key-alias", key.alias]
    if key.key_password:
        command += ["--key-pass", f"pass:{key.key_password}"]
    if min_sdk is not None:
        command += ["--min-sdk-version", str(min_sdk)]
    command += ["--out", output, unsigned_apk]

    logger.command(command, secrets=key.secrets())
    stdout, stderr, returncode = runner.run(command)
    if returncode != 0:
        logger.error(f"apksigner failed (Exit Code: {returncode}):")
        if stdout:
            logger.error(f"Stdout:\n{stdout}")
        if stderr:
            logger.error(f"Stderr:\n{stderr}")
        output_text = "\n".join(part for part in (stdout, stderr) if part)
        raise SigningError(
            _failure_reason(stdout, stderr, returncode),
            command=_mask(command, key.secrets()),
            output=output_text,
        )
    return output
