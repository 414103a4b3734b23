import click
from .commands import build, manifest, ndk_info, toolchain


@click.group()
@click.option("--path", "-p", default=".", help="Path to the project directory.")
@click.pass_context
def cli(ctx, path):
    """ndkpack: NDK toolchain resolution and APK packaging."""
    ctx.obj = {"path": path}

cli.add_command(ndk_info)
cli.add_command(toolchain)
cli.add_command(manifest)
cli.add_command(build)


def main():
    cli()


if __name__ == '__main__':
    main()
