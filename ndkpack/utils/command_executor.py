import subprocess
from collections import namedtuple

from ..cli_logger import logger

CommandResult = namedtuple("CommandResult", ["stdout", "stderr", "returncode"])


def run_shell_command(command, env=None, cwd=None, input_data=None):
    """
    Executes a command and captures its output.

    Args:
        command (list): The command to execute as a list of strings.
        env (dict, optional): A dictionary of environment variables.
        cwd (str, optional): The working directory for the command.
        input_data (str, optional): Data to be passed to the command's stdin.

    Returns:
        CommandResult: (stdout, stderr, returncode). A missing executable is
        reported as returncode -1 with the error text in stderr.
    """
    command = [str(c) for c in command]
    try:
        result = subprocess.run(
            command,
            capture_output=True,
            text=True,
            env=env,
            input=input_data,
            check=False,
            cwd=cwd
        )
        return CommandResult(result.stdout, result.stderr, result.returncode)
    except FileNotFoundError as e:
        logger.error(f"Command not found: {e.filename}")
        return CommandResult("", str(e), -1)
    except PermissionError as e:
        logger.error(f"Command not executable: {e.filename}")
        return CommandResult("", str(e), -1)


class ToolRunner:
    """Runs external tools (aapt, apksigner, llvm-objcopy) and captures output.

    The package assembler only talks to this interface, so tests can pass an
    object with the same ``run`` method instead of spawning processes.
    """

    def __init__(self, env=None):
        self.env = env

    def run(self, command, cwd=None):
        return run_shell_command(command, env=self.env, cwd=cwd)
