from .command_executor import CommandResult, ToolRunner, run_shell_command
from .file_manager import atomic_output, create_staging_dir, ensure_dir, remove_tree, safe_join, walk_sorted
