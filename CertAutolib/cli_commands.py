"""
Implementation of CLI commands for CertAutolib.

This module defines the command-line interface (CLI) for the ``certauto``
tool, utilizing the ``click`` library. It provides commands for requesting
the certificates described in the configuration file, showing the state of
a request, forgetting a request so it is submitted again, copying renewed
certificates to their final paths and checking the preconditions of the
host.
"""


import click
from collections import OrderedDict
from cryptography import x509
from pathlib import Path
from sys import exit, argv

from CertAutolib import logger
from CertAutolib.controller import Controller
from CertAutolib.enums import RequestOutcome, StoreKind
from CertAutolib.exceptions import CertAutolibException
from CertAutolib.utils import check_ipa_client, required_packages, \
    _check_packages


def check_conf_path(conf: str):
    """
    Validates and resolves the path to the JSON configuration file.

    :param conf: The path string to the configuration file.
    :type conf: str
    :return: A resolved ``Path`` object if the file exists.
    :rtype: pathlib.Path
    :raises CertAutolibException: If there is a problem with the file.
    """
    try:
        return Path(click.Path(exists=True, resolve_path=True)(conf))
    except click.BadParameter as e:
        raise CertAutolibException(str(e))


# In Help output, force the subcommand list to match the order
# listed in this file.   Solution was found here:
# https://github.com/pallets/click/issues/513#issuecomment-301046782
class NaturalOrderGroup(click.Group):
    """
    A custom ``click.Group`` subclass that ensures subcommands are listed in
    the help output in the order they were defined in the code.
    """
    def __init__(self, name: str = None, commands: dict = None, **attrs):
        if commands is None:
            commands = OrderedDict()
        elif not isinstance(commands, OrderedDict):
            commands = OrderedDict(commands)
        click.Group.__init__(self, name=name,
                             commands=commands,
                             **attrs)

    def list_commands(self, ctx: click.Context):
        return self.commands.keys()


def _exit_code(outcomes) -> int:
    """
    Returns the exit code for a set of outcomes: success if every request is
    satisfied, otherwise the value of the first failed outcome.
    """
    for outcome in outcomes:
        if outcome not in (RequestOutcome.SUCCESS,
                           RequestOutcome.ALREADY_SATISFIED):
            return outcome.value
    return RequestOutcome.SUCCESS.value


@click.group(cls=NaturalOrderGroup)
@click.option("--conf", "-c",
              default="./conf.json",
              show_default=True,
              help="Path to JSON configuration file.")
@click.option("--strict", "-s", is_flag=True, default=False,
              show_default=True,
              help="Fail if the IPA client is not configured on the system.")
@click.option("--verbose", "-v", default="INFO", show_default=True,
              type=click.Choice(
                  ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                  case_sensitive=False),
              help="Set the verbosity level of the output.")
@click.pass_context
def cli(ctx: click.Context, conf: str, strict: bool, verbose: str):
    """
    The main entry point for the CertAutolib CLI.
    It initializes the Controller instance based on the configuration.
    """
    logger.setLevel(verbose.upper())
    logger.debug(f"Invoked CLI command: {' '.join(argv)}")
    ctx.ensure_object(dict)
    if ctx.invoked_subcommand == "check":
        return
    try:
        ctx.obj["CONTROLLER"] = Controller(check_conf_path(conf),
                                           strict=strict)
    except CertAutolibException as e:
        logger.error(e)
        exit(e.outcome.value)


@cli.command()
@click.argument("principals", nargs=-1)
@click.option("--workers", "-w",
              required=False,
              default=None,
              type=int,
              help="Number of requests processed concurrently. Defaults to "
                   "the value from the configuration file.")
@click.pass_context
def request(ctx: click.Context, principals: tuple, workers: int):
    """
    Requests certificates from the configuration file. If PRINCIPALS are
    given, only requests of these principals are processed.
    """
    cnt = ctx.obj["CONTROLLER"]
    specs = cnt.requests
    if principals:
        try:
            specs = [cnt.get_spec(p) for p in principals]
        except CertAutolibException as e:
            logger.error(e)
            exit(e.outcome.value)
    if not specs:
        logger.warning("No certificate requests are configured")
        exit(RequestOutcome.SUCCESS.value)

    results = cnt.run_many(specs, workers)
    for principal, outcome in results.items():
        click.echo(f"{principal}: {outcome.name}")
    exit(_exit_code(results.values()))


@cli.command()
@click.argument("principal", required=True)
@click.pass_context
def status(ctx: click.Context, principal: str):
    """
    Shows the state of the request of PRINCIPAL.
    """
    cnt = ctx.obj["CONTROLLER"]
    try:
        spec = cnt.get_spec(principal)
        record = cnt.status(spec)
    except CertAutolibException as e:
        logger.error(e)
        exit(e.outcome.value)

    if record is None:
        click.echo(f"{spec.principal}: not requested")
        exit(RequestOutcome.SUCCESS.value)
    click.echo(f"{spec.principal}: {record.status.value} "
               f"(request id {record.request_id})")
    if spec.store_kind == StoreKind.file and spec.cert.exists():
        cert = x509.load_pem_x509_certificate(spec.cert.read_bytes())
        click.echo(f"{spec.cert}: {cert.subject.rfc4514_string()}, valid "
                   f"until {cert.not_valid_after_utc.isoformat()}")
    exit(RequestOutcome.SUCCESS.value)


@cli.command()
@click.argument("principal", required=True)
@click.pass_context
def forget(ctx: click.Context, principal: str):
    """
    Removes the records of the request of PRINCIPAL, so the next run of
    ``request`` submits it again.
    """
    cnt = ctx.obj["CONTROLLER"]
    try:
        cnt.forget(cnt.get_spec(principal))
    except CertAutolibException as e:
        logger.error(e)
        exit(e.outcome.value)
    exit(RequestOutcome.SUCCESS.value)


@cli.command()
@click.argument("principal", required=True)
@click.pass_context
def refresh(ctx: click.Context, principal: str):
    """
    Copies the key and certificate renewed by certmonger to the final paths
    of PRINCIPAL. Intended as the post-save command of the request.
    """
    cnt = ctx.obj["CONTROLLER"]
    try:
        outcome = cnt.refresh(cnt.get_spec(principal))
    except CertAutolibException as e:
        logger.error(e)
        exit(e.outcome.value)
    exit(outcome.value)


@cli.command()
def check():
    """
    Checks that the IPA client is configured and that packages providing
    certmonger are installed.
    """
    ok = check_ipa_client()
    missing = _check_packages(required_packages())
    if missing:
        logger.error(f"Missing packages: {', '.join(missing)}")
    if ok and not missing:
        logger.info("System is ready for certificate requests")
        exit(RequestOutcome.SUCCESS.value)
    exit(RequestOutcome.ERROR.value)


if __name__ == "__main__":
    cli()
