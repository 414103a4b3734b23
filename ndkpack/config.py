import os
import toml
from .cli_logger import logger
from .errors import ConfigError

CONFIG_FILE = "ndkpack.toml"


def load_config(path="."):
    config_path = os.path.join(path, CONFIG_FILE)
    logger.info(f"Loading configuration from {config_path}")
    if not os.path.exists(config_path):
        return {}
    try:
        with open(config_path, "r") as f:
            return toml.load(f)
    except toml.TomlDecodeError as e:
        logger.error(f"Error decoding TOML file at {config_path}: {e}")
        logger.info("Please check the file's format for syntax errors.")
        raise ConfigError(f"Malformed {config_path}: {e}") from e
    except IOError as e:
        logger.error(f"Error reading configuration file at {config_path}: {e}")
        logger.info("Please check file permissions.")
        raise ConfigError(f"Cannot read {config_path}: {e}") from e


def save_config(config, path="."):
    config_path = os.path.join(path, CONFIG_FILE)
    logger.info(f"Saving configuration to {config_path}")
    try:
        with open(config_path, "w") as f:
            toml.dump(config, f)
    except IOError as e:
        logger.error(f"Error saving configuration to {config_path}: {e}")
        logger.info("Please check file permissions and ensure the directory is writable.")
        raise ConfigError(f"Cannot write {config_path}: {e}") from e


def get_table(config, name):
    """Return config[name] as a dict; a missing table is empty."""
    table = config.get(name, {})
    if not isinstance(table, dict):
        raise ConfigError(f"[{name}] must be a table, got {type(table).__name__}")
    return table
