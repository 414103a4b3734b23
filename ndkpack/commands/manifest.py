import click
from .. import builder
from .. import config as config_module
from ..decorators import handle_exceptions
from ..manifest import to_xml


@click.command()
@click.pass_context
@handle_exceptions
def manifest(ctx):
    """Print the AndroidManifest.xml generated from ndkpack.toml."""
    conf = config_module.load_config(path=ctx.obj["path"])
    click.echo(to_xml(builder.manifest_from_config(conf)), nl=False)
