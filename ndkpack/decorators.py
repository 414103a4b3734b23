import functools
import click
import sys
from .cli_logger import logger
from .errors import ExternalToolError, NdkPackError, SigningError


def handle_exceptions(func):
    """A decorator that reports errors for CLI commands and exits with status 1."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except click.Abort:
            logger.warning("\nCommand aborted by user.")
            sys.exit(1)
        except (ExternalToolError, SigningError) as e:
            logger.error(f"Error: {e}")
            if e.output:
                logger.error(f"Output:\n{e.output}")
            sys.exit(1)
        except NdkPackError as e:
            logger.error(f"Error: {e}")
            sys.exit(1)
        except OSError as e:
            logger.error(f"Error: {e}")
            logger.exception(*sys.exc_info())
            sys.exit(1)
        except Exception as e:
            logger.error(f"\nAn unexpected error occurred: {e}")
            logger.exception(*sys.exc_info())
            sys.exit(1)
    return wrapper
