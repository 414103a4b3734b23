import click
from .. import builder, catalog, ndk
from .. import config as config_module
from ..decorators import handle_exceptions


@click.command()
@click.pass_context
@click.argument("abi")
@click.option("--api", type=int, default=None, help="Requested API level (defaults to [android] api_level).")
@click.option("--strict", is_flag=True, help="Fail instead of clamping an out-of-range API level.")
@handle_exceptions
def toolchain(ctx, abi, api, strict):
    """Print the compiler environment for ABI as KEY=VALUE lines.

    ABI: arm64, armv7, x86, x86_64 (or arm64-v8a, armeabi-v7a).
    """
    conf = config_module.load_config(path=ctx.obj["path"])
    installation = builder.resolve_ndk(conf, ctx.obj["path"])
    if api is None:
        api = conf.get("android", {}).get("api_level", catalog.default_min_api())
    policy = ndk.API_POLICY_STRICT if strict else conf.get("android", {}).get("api_policy", ndk.API_POLICY_CLAMP)
    paths = ndk.resolve_toolchain(installation, abi, api, policy)
    for key in sorted(paths.env):
        click.echo(f"{key}={paths.env[key]}")
