import click
import sys
from .. import builder
from .. import config as config_module
from ..cli_logger import logger
from ..decorators import handle_exceptions


@click.command()
@click.pass_context
@click.option("--output", "-o", default=None, help="Where to write the signed APK.")
@handle_exceptions
def build(ctx, output):
    """Assemble and sign the APK described by ndkpack.toml."""
    conf = config_module.load_config(path=ctx.obj["path"])
    if not conf:
        logger.error("Error: No ndkpack.toml found in the current directory or specified path.")
        sys.exit(1)
    path = builder.build_apk(conf, project_dir=ctx.obj["path"], output=output)
    logger.success(f"Build completed: {path}")
