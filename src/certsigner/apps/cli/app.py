"""certsigner command line interface."""

from __future__ import annotations

import logging
import os
import signal
import threading
import traceback
from typing import Any, Optional

import typer

from certsigner.apps.cli.options import OptionsError, ParsedOptions, parse_options
from certsigner.services.errors import CertSignerError
from certsigner.services.logging import setup_logging
from certsigner.services.node_config import CertSignerConfig, load_config
from certsigner.services.signing import HttpSigningClient, Provisioner, ProvisioningState, SigningClient
from certsigner.services.signing.provisioner import ProvisioningResult, ProvisioningStatus

app = typer.Typer(help="Provision the node TLS identity from a certificate signing authority.", no_args_is_help=True)

_log = logging.getLogger("certsigner.cli")

_STATE_MESSAGES = {
    ProvisioningState.NO_IDENTITY: "No certificate found, preparing key pair…",
    ProvisioningState.REQUEST_PENDING: "Submitting certificate signing request…",
    ProvisioningState.AWAITING_APPROVAL: "Waiting for the signing authority to approve the request…",
    ProvisioningState.APPROVED: "Request approved, installing certificates…",
    ProvisioningState.INSTALLED: "Certificates installed.",
}


def _signing_client(config: CertSignerConfig) -> SigningClient:
    return HttpSigningClient.from_settings(config)


def _resolve_options(base_dir: Optional[str], config_file: Optional[str]) -> ParsedOptions:
    result = parse_options(base_dir, config_file)
    if isinstance(result, OptionsError):
        _log.error("Unable to parse args: %s", result.message)
        raise typer.Exit(result.exit_code)
    return result


def _fail(exc: CertSignerError) -> None:
    _log.error("%s: %s", type(exc).__name__, exc)
    if os.getenv("CERTSIGNER_CLI_DEBUG") == "1":
        traceback.print_exc()
    raise typer.Exit(exc.exit_code)


def _install_signal_handlers(cancel: threading.Event) -> dict[int, Any]:
    if threading.current_thread() is not threading.main_thread():
        return {}

    def _handler(signum, _frame) -> None:
        _log.warning("Received signal %s, stopping…", signum)
        cancel.set()

    previous: dict[int, Any] = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, _handler)
    return previous


def _restore_signal_handlers(previous: dict[int, Any]) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


def _echo_result(result: ProvisioningResult) -> None:
    if not result.installed:
        typer.echo("Certificate already installed, nothing to do.")
        if result.repaired_trust_store:
            typer.echo("Trust store was missing the root certificate and has been restored.")
        return
    typer.echo(f"Request ID: {result.request_id}")
    for index, cert in enumerate(result.chain):
        typer.echo(f"  [{index}] {cert.subject.rfc4514_string()}")


def _echo_status(status: ProvisioningStatus) -> None:
    typer.echo(f"State: {status.state.value}")
    if status.request_id:
        typer.echo(f"Request ID: {status.request_id}")
    if status.subject:
        typer.echo(f"Subject: {status.subject}")
    if status.not_valid_after:
        typer.echo(f"Expires: {status.not_valid_after.isoformat()}")


@app.command("provision")
def cmd_provision(
    base_dir: Optional[str] = typer.Option(None, "--base-dir", envvar="CERTSIGNER_BASE_DIR", help="The directory to put all key stores under."),
    config_file: Optional[str] = typer.Option(None, "--config-file", help="The path to the config file."),
    timeout: Optional[float] = typer.Option(None, "--timeout", min=0, help="Give up waiting for approval after this many seconds."),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level."),
):
    setup_logging(level=log_level)
    options = _resolve_options(base_dir, config_file)
    setup_logging(options.base_dir, level=log_level)

    cancel = threading.Event()
    previous = _install_signal_handlers(cancel)
    try:
        config = load_config(options.base_dir, options.config_file)
        if timeout is not None:
            config.poll_timeout_seconds = timeout
        provisioner = Provisioner(
            config,
            _signing_client(config),
            on_state=lambda state: typer.echo(_STATE_MESSAGES[state]),
        )
        result = provisioner.provision(cancel=cancel)
    except CertSignerError as exc:
        _fail(exc)
    finally:
        _restore_signal_handlers(previous)
    _echo_result(result)


@app.command("status")
def cmd_status(
    base_dir: Optional[str] = typer.Option(None, "--base-dir", envvar="CERTSIGNER_BASE_DIR", help="The directory holding the key stores."),
    config_file: Optional[str] = typer.Option(None, "--config-file", help="The path to the config file."),
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level."),
):
    setup_logging(level=log_level)
    options = _resolve_options(base_dir, config_file)
    try:
        config = load_config(options.base_dir, options.config_file)
        status = Provisioner(config, _signing_client(config)).status()
    except CertSignerError as exc:
        _fail(exc)
    _echo_status(status)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
