import click
from .. import builder
from .. import config as config_module
from ..decorators import handle_exceptions


@click.command(name="ndk-info")
@click.pass_context
@handle_exceptions
def ndk_info(ctx):
    """Show the NDK that builds will use."""
    conf = config_module.load_config(path=ctx.obj["path"])
    installation = builder.resolve_ndk(conf, ctx.obj["path"])
    low, high = installation.api_range()
    click.echo(f"root: {installation.root}")
    click.echo(f"version: {installation.version}")
    click.echo(f"host: {installation.host.tag}")
    click.echo(f"api: {low}-{high}")
