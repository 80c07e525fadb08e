"""
krc-transfer command line tool.

Usage:
    krc-transfer airdrop transfers.csv --network testnet-10
    krc-transfer transfer-krc20 NACHO 100 kaspa:qq... --simulate
    krc-transfer transfer-krc721 KASPUNKS 42 kaspa:qq...
    krc-transfer address --protocol krc-721 --ticker KASPUNKS --token-id 42 --destination kaspa:qq...
"""
import importlib
import logging
import os
import sys
from typing import Callable, List, Optional

import typer

from krc_transfer.batch import BatchReport
from krc_transfer.bookkeeping import Bookkeeper, JsonFileBookkeeper
from krc_transfer.client import TransferClient
from krc_transfer.config import NetworkConfig, TransferSettings
from krc_transfer.exceptions import InputFileError, TransferError
from krc_transfer.inputs import load_transfer_file
from krc_transfer.keys import TreasuryIdentity, load_treasury
from krc_transfer.ledger.base import LedgerClient
from krc_transfer.ledger.memory import InMemoryLedger
from krc_transfer.models import FungibleTransferRequest, NftTransferRequest, ProtocolTag, TransferResult
from krc_transfer.script import build_envelope
from krc_transfer.utils import kaspa_to_sompi
from krc_transfer.version import __version__

app = typer.Typer(help="Commit-reveal KRC-20 / KRC-721 transfers on Kaspa", no_args_is_help=True)

logger = logging.getLogger("krc_cli")

PRIVATE_KEY_ENV = "TREASURY_PRIVATE_KEY"
ADDRESS_ENV = "TREASURY_ADDRESS"


def should_use_color() -> bool:
    """Check if color output should be used"""
    return sys.stdout.isatty()


def _style(text: str, color: str, no_color: bool) -> str:
    if no_color:
        return text
    return typer.style(text, fg=color)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _fail(message: str, code: int = 1) -> None:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(code=code)


def _settings(network: Optional[str], delay: Optional[float]) -> TransferSettings:
    overrides = {}
    if network:
        overrides["network"] = network
    if delay is not None:
        overrides["batch_delay"] = delay
    try:
        return TransferSettings.from_env(**overrides)
    except ValueError as e:
        _fail(str(e))


def _treasury(network: str, require_address: bool = True) -> TreasuryIdentity:
    private_key = os.environ.get(PRIVATE_KEY_ENV)
    address = os.environ.get(ADDRESS_ENV)
    if not private_key:
        _fail(f"Treasury private key not found in environment variable {PRIVATE_KEY_ENV}")
    if require_address and not address:
        _fail(f"Treasury address not found in environment variable {ADDRESS_ENV}")
    try:
        return load_treasury(private_key, network, address)
    except ValueError as e:
        _fail(str(e))


def load_ledger_factory(target: str) -> Callable[[str], LedgerClient]:
    """
    Resolve a ``module:callable`` ledger factory.

    The callable receives the network name and returns a connected
    LedgerClient.

    Raises:
        ValueError: If the target is malformed or cannot be imported
    """
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Ledger factory must look like 'module:callable', got {target!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ValueError(f"Cannot import ledger factory module {module_name!r}: {e}")
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ValueError(f"Ledger factory {target!r} is not callable")
    return factory


def _ledger(
    settings: TransferSettings,
    treasury: TreasuryIdentity,
    simulate: bool,
    simulate_balance: str,
    ledger_factory: Optional[str],
) -> LedgerClient:
    if simulate:
        ledger = InMemoryLedger(settings.network)
        try:
            ledger.fund(treasury.address, kaspa_to_sompi(simulate_balance))
        except ValueError as e:
            _fail(str(e))
        typer.echo(f"Simulating on {settings.network} with {simulate_balance} KAS in the treasury")
        return ledger
    if not ledger_factory:
        _fail("A ledger client is required: pass --ledger-factory module:callable or use --simulate")
    try:
        return load_ledger_factory(ledger_factory)(settings.network)
    except ValueError as e:
        _fail(str(e))


def _client(
    network: Optional[str],
    simulate: bool,
    simulate_balance: str,
    ledger_factory: Optional[str],
    ledger_file: Optional[str],
    rest_url: Optional[str],
    delay: Optional[float] = None,
) -> TransferClient:
    settings = _settings(network, delay)
    treasury = _treasury(settings.network)
    ledger = _ledger(settings, treasury, simulate, simulate_balance, ledger_factory)
    bookkeeper: Optional[Bookkeeper] = JsonFileBookkeeper(ledger_file) if ledger_file else None

    # Simulated runs poll the simulated ledger itself
    if rest_url is None and not simulate:
        rest_url = NetworkConfig.get_rest_url(settings.network)
    try:
        return TransferClient(ledger, treasury, settings=settings, bookkeeper=bookkeeper, rest_url=rest_url)
    except ValueError as e:
        _fail(str(e))


def _print_result(result: TransferResult, no_color: bool) -> None:
    if result.succeeded and result.accepted:
        status = _style("OK", "green", no_color)
    elif result.succeeded:
        status = _style("PENDING", "yellow", no_color)
    else:
        status = _style(result.state.value.upper(), "red", no_color)
    typer.echo(f"[{status}] {result.request.describe()}")
    if result.commit_transaction_id:
        typer.echo(f"  Commit TX: {result.commit_transaction_id}")
    if result.reveal_transaction_id:
        typer.echo(f"  Reveal TX: {result.reveal_transaction_id}")
    if result.error:
        typer.echo(f"  Error: {result.error}")


def _print_report(report: BatchReport, no_color: bool) -> None:
    for result in report.results:
        _print_result(result, no_color)
    for failure in report.errors:
        typer.echo(f"[{_style('ERROR', 'red', no_color)}] {failure.request.describe()}: {failure.error}")
    counts = report.counts()
    typer.echo(
        f"{counts['succeeded']}/{counts['total']} transfers verified "
        f"({counts['pending']} pending, {counts['failed']} failed, {counts['timed_out']} timed out)"
    )


NETWORK_OPTION = typer.Option(None, "--network", "-n", help="Network name (default: $NETWORK or mainnet)")
SIMULATE_OPTION = typer.Option(False, "--simulate", help="Run against an in-memory simulated ledger")
SIMULATE_BALANCE_OPTION = typer.Option("100", "--simulate-balance", help="Simulated treasury balance in KAS")
FACTORY_OPTION = typer.Option(None, "--ledger-factory", help="Ledger client factory as module:callable")
LEDGER_FILE_OPTION = typer.Option(None, "--ledger-file", help="JSON file recording transfers and payments")
REST_URL_OPTION = typer.Option(None, "--rest-url", help="Kaspa REST API URL used for balance polling")
VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Enable debug logging")
NO_COLOR_OPTION = typer.Option(False, "--no-color", help="Disable colored output")


@app.command()
def airdrop(
    file: str = typer.Argument(..., help="CSV or JSON file with walletAddress, tick and id/tokenId"),
    network: Optional[str] = NETWORK_OPTION,
    simulate: bool = SIMULATE_OPTION,
    simulate_balance: str = SIMULATE_BALANCE_OPTION,
    ledger_factory: Optional[str] = FACTORY_OPTION,
    ledger_file: Optional[str] = LEDGER_FILE_OPTION,
    rest_url: Optional[str] = REST_URL_OPTION,
    delay: Optional[float] = typer.Option(None, "--delay", help="Seconds between transfers"),
    verbose: bool = VERBOSE_OPTION,
    no_color: bool = NO_COLOR_OPTION,
):
    """Transfer KRC-721 tokens to every recipient listed in FILE."""
    _configure_logging(verbose)
    no_color = no_color or not should_use_color()

    client = _client(network, simulate, simulate_balance, ledger_factory, ledger_file, rest_url, delay)
    try:
        requests = load_transfer_file(file, prefix=client.settings.prefix)
    except InputFileError as e:
        _fail(str(e))

    typer.echo(f"Found {len(requests)} NFTs to transfer")
    try:
        report = client.airdrop(requests)
    finally:
        client.close()

    _print_report(report, no_color)
    if not report.all_succeeded:
        raise typer.Exit(code=1)


def _run_single(client: TransferClient, run: Callable[[], TransferResult], no_color: bool) -> None:
    try:
        result = run()
    except (TransferError, ValueError) as e:
        _fail(str(e))
    finally:
        client.close()
    _print_result(result, no_color)
    if not result.succeeded:
        raise typer.Exit(code=1)


@app.command("transfer-krc20")
def transfer_krc20(
    ticker: str = typer.Argument(..., help="Token ticker"),
    amount: str = typer.Argument(..., help="Amount in the token's smallest unit"),
    destination: str = typer.Argument(..., help="Recipient address"),
    rebate: str = typer.Option("0", "--rebate", help="KAS rebate booked against the recipient"),
    full_rebate: bool = typer.Option(False, "--full-rebate", help="Book three times the rebate"),
    network: Optional[str] = NETWORK_OPTION,
    simulate: bool = SIMULATE_OPTION,
    simulate_balance: str = SIMULATE_BALANCE_OPTION,
    ledger_factory: Optional[str] = FACTORY_OPTION,
    ledger_file: Optional[str] = LEDGER_FILE_OPTION,
    rest_url: Optional[str] = REST_URL_OPTION,
    verbose: bool = VERBOSE_OPTION,
    no_color: bool = NO_COLOR_OPTION,
):
    """Transfer KRC-20 tokens from the treasury."""
    _configure_logging(verbose)
    no_color = no_color or not should_use_color()
    try:
        rebate_sompi = kaspa_to_sompi(rebate)
    except ValueError as e:
        _fail(str(e))

    client = _client(network, simulate, simulate_balance, ledger_factory, ledger_file, rest_url)
    _run_single(
        client,
        lambda: client.transfer_krc20(ticker, amount, destination, rebate_sompi, full_rebate),
        no_color,
    )


@app.command("transfer-krc721")
def transfer_krc721(
    ticker: str = typer.Argument(..., help="Collection ticker"),
    token_id: str = typer.Argument(..., help="Token id"),
    destination: str = typer.Argument(..., help="Recipient address"),
    network: Optional[str] = NETWORK_OPTION,
    simulate: bool = SIMULATE_OPTION,
    simulate_balance: str = SIMULATE_BALANCE_OPTION,
    ledger_factory: Optional[str] = FACTORY_OPTION,
    ledger_file: Optional[str] = LEDGER_FILE_OPTION,
    rest_url: Optional[str] = REST_URL_OPTION,
    verbose: bool = VERBOSE_OPTION,
    no_color: bool = NO_COLOR_OPTION,
):
    """Transfer one KRC-721 token from the treasury."""
    _configure_logging(verbose)
    no_color = no_color or not should_use_color()
    client = _client(network, simulate, simulate_balance, ledger_factory, ledger_file, rest_url)
    _run_single(client, lambda: client.transfer_krc721(ticker, token_id, destination), no_color)


@app.command()
def address(
    protocol: ProtocolTag = typer.Option(ProtocolTag.KRC721, "--protocol", help="krc-20 or krc-721"),
    ticker: str = typer.Option(..., "--ticker", help="Token ticker"),
    destination: str = typer.Option(..., "--destination", help="Recipient address"),
    amount: Optional[str] = typer.Option(None, "--amount", help="KRC-20 amount"),
    token_id: Optional[str] = typer.Option(None, "--token-id", help="KRC-721 token id"),
    network: Optional[str] = NETWORK_OPTION,
):
    """Print the treasury address and the envelope's script-hash address."""
    settings = _settings(network, None)
    treasury = _treasury(settings.network, require_address=False)

    try:
        if protocol == ProtocolTag.KRC20:
            if amount is None:
                _fail("--amount is required for krc-20")
            request = FungibleTransferRequest(ticker=ticker, amount=amount, destination=destination)
        else:
            if token_id is None:
                _fail("--token-id is required for krc-721")
            request = NftTransferRequest(ticker=ticker, token_id=token_id, destination=destination)
        envelope = build_envelope(
            treasury.x_only_public_key, settings.marker(protocol), request.payload(), settings.network
        )
    except (ValueError, TransferError) as e:
        _fail(str(e))

    typer.echo(f"Treasury address: {treasury.address}")
    typer.echo(f"Payload: {envelope.payload.decode('utf-8')}")
    typer.echo(f"Script-hash address: {envelope.script_hash_address}")


@app.command()
def version():
    """Print the SDK version."""
    typer.echo(__version__)


def main(argv: Optional[List[str]] = None) -> None:
    app(args=argv)


if __name__ == "__main__":
    main()
