#!/usr/bin/env python3
"""
UA Privilege Scanner - discovers OPC UA servers on the local subnet and
reports which privileges each endpoint grants to anonymous clients and to
clients using common default credentials.
"""

import logging
import sys
import threading

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from scanners.errors import ConfigError
from scanners.ledger import AuthMethod, Privilege
from scanners.orchestrator import ScanOrchestrator
from utils.config import load_config, validate_config
from utils.credentials import load_credentials, mask_password
from utils.network import MAX_PREFIX_LENGTH, MIN_PREFIX_LENGTH
from utils.opcua_client import UaClientFactory
from utils.reporting import GRANTED, DENIED, cell_label, generate_report

# Initialize console
console = Console()

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, console=console)]
)
logger = logging.getLogger("UAScanner")

# Version
VERSION = "1.0.0"

CELL_STYLES = {GRANTED: "bold red", DENIED: "green"}

# Methods that are actually probed; CERTIFICATE stays untested
PROBED_METHODS = (AuthMethod.ANONYMOUS, AuthMethod.COMMON_CREDENTIALS)


def print_banner():
    """Print the scanner banner."""
    console.print(Panel(
        f"[bold blue]UA Privilege Scanner v{VERSION}[/bold blue]\n"
        "[cyan]OPC UA endpoint discovery and access privilege assessment[/cyan]",
        border_style="blue",
    ))


def _option_or_config(value, config, key):
    return config[key] if value is None else value


def _run_interruptible(orchestrator, addresses):
    """Run the scan in a worker thread so Ctrl-C can cancel it cleanly."""
    outcome = {}

    def target():
        outcome["result"] = orchestrator.run(addresses)

    worker = threading.Thread(target=target, name="ua-scan", daemon=True)
    worker.start()
    while worker.is_alive():
        try:
            worker.join(0.2)
        except KeyboardInterrupt:
            console.print("\n[bold yellow]Cancelling scan, waiting for in-flight probes...[/bold yellow]")
            orchestrator.abort()
    return outcome.get("result")


def print_matrix(scan_result):
    """Print the privilege matrix of every endpoint."""
    table = Table(title="Access Privileges per Endpoint")
    table.add_column("Endpoint", style="cyan")
    for method in PROBED_METHODS:
        for privilege in Privilege:
            table.add_column(f"{privilege.name}\n{method.name}")

    for identity, record in scan_result.items():
        cells = []
        for method in PROBED_METHODS:
            for privilege in Privilege:
                label = cell_label(record.cell(privilege, method))
                style = CELL_STYLES.get(label)
                cells.append(f"[{style}]{label}[/{style}]" if style else label)
        table.add_row(str(identity), *cells)

    console.print(table)


def print_summary(scan_result, orchestrator, elapsed_time):
    """Print the scan summary table."""
    table = Table(title="UA Privilege Scanner - Scan Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Reachable hosts", str(len(orchestrator.hosts)))
    table.add_row("Endpoints", str(len(scan_result)))
    for method in PROBED_METHODS:
        connect = scan_result.count_granted(Privilege.CONNECT, method)
        read = scan_result.count_granted(Privilege.READ, method)
        color = "bold red" if connect else "green"
        table.add_row(f"{method.name} connect / read",
                      f"[{color}]{connect}[/{color}] / [{color}]{read}[/{color}]")
    if scan_result.aborted:
        table.add_row("Status", f"[bold red]aborted ({scan_result.abort_reason})[/bold red]")
    else:
        table.add_row("Status", "completed")
    table.add_row("Scan duration", f"{elapsed_time:.2f} seconds")
    console.print(table)


@click.group()
def cli():
    """UA Privilege Scanner - OPC UA access privilege assessment for the local subnet."""
    pass


@cli.command()
@click.option('--address', 'addresses', multiple=True,
              help='Own IPv4 address to derive the subnet from (repeatable, default: all local addresses)')
@click.option('--prefix-length', type=click.IntRange(MIN_PREFIX_LENGTH, MAX_PREFIX_LENGTH), default=None,
              help='Subnet prefix length (default 28, a 16-address block)')
@click.option('--timeout', type=float, default=None, help='Timeout per network operation in seconds')
@click.option('--threads', type=click.IntRange(min=1), default=None,
              help='Maximum number of concurrent network operations')
@click.option('--credentials', 'credentials_file', type=click.Path(exists=True, dir_okay=False), default=None,
              help='Credential list (YAML or username:password lines)')
@click.option('--config', 'config_file', type=click.Path(exists=True, dir_okay=False), default=None,
              help='Configuration file (YAML)')
@click.option('--deadline', type=float, default=None, help='Overall scan deadline in seconds')
@click.option('--rate-limit', type=float, default=None,
              help='Delay between credential attempts in seconds (protects fragile ICS devices)')
@click.option('--output-format', type=click.Choice(['csv', 'json', 'all']), default='csv',
              help='Report format')
@click.option('--output-file', help='Report file name (without extension)')
@click.option('--debug', is_flag=True, help='Enable debug logging')
def scan(addresses, prefix_length, timeout, threads, credentials_file, config_file, deadline,
         rate_limit, output_format, output_file, debug):
    """Discover OPC UA endpoints and test their access privileges."""
    if debug:
        logging.getLogger("UAScanner").setLevel(logging.DEBUG)
        logger.debug("Debug logging enabled")

    print_banner()

    try:
        config = load_config(config_file)
        config.update({
            "prefix_length": _option_or_config(prefix_length, config, "prefix_length"),
            "timeout": _option_or_config(timeout, config, "timeout"),
            "workers": _option_or_config(threads, config, "workers"),
            "credentials_file": _option_or_config(credentials_file, config, "credentials_file"),
            "deadline": _option_or_config(deadline, config, "deadline"),
            "request_delay": _option_or_config(rate_limit, config, "request_delay"),
        })
        validate_config(config)
        credentials = load_credentials(config["credentials_file"])
    except ConfigError as e:
        raise click.UsageError(str(e))

    logger.info(f"Starting scan, prefix length /{config['prefix_length']}, "
                f"timeout {config['timeout']}s, {config['workers']} worker(s)")
    logger.info(f"{len(credentials)} common credential(s) loaded")

    orchestrator = ScanOrchestrator(
        prefix_length=config["prefix_length"],
        credentials=credentials,
        client_factory=UaClientFactory(timeout=config["timeout"]),
        deadline=config["deadline"],
        timeout=config["timeout"],
        workers=config["workers"],
        request_delay=config["request_delay"],
        port=config["port"],
    )

    scan_result = _run_interruptible(orchestrator, list(addresses) or None)
    if scan_result is None:
        console.print("[bold red]Scan failed before producing results, see log above.[/bold red]")
        sys.exit(1)
    elapsed_time = orchestrator.get_scan_duration() or 0.0
    console.print(f"\n[bold green]Scan completed in {elapsed_time:.2f} seconds[/bold green]")

    if len(scan_result):
        print_matrix(scan_result)
    else:
        console.print("[yellow]No OPC UA endpoints found.[/yellow]")
    print_summary(scan_result, orchestrator, elapsed_time)

    output_formats = ['csv', 'json'] if output_format == 'all' else [output_format]
    for format_type in output_formats:
        report_path = generate_report(scan_result, format_type, output_file, config["output_dir"])
        console.print(f"[bold green]Report saved to: {report_path}[/bold green]")

    if scan_result.aborted:
        sys.exit(1)


@cli.command()
@click.option('--credentials', 'credentials_file', type=click.Path(exists=True, dir_okay=False), default=None,
              help='Credential list (YAML or username:password lines)')
def credentials(credentials_file):
    """List the common credentials tried against each endpoint."""
    try:
        creds = load_credentials(credentials_file)
    except ConfigError as e:
        raise click.UsageError(str(e))

    table = Table(title="Common Credentials (in trial order)")
    table.add_column("#", style="cyan")
    table.add_column("Username", style="green")
    table.add_column("Password")
    for index, credential in enumerate(creds, start=1):
        table.add_row(str(index), credential.username, mask_password(credential.password))
    console.print(table)


@cli.command()
def version():
    """Show the version of the tool."""
    console.print(f"UA Privilege Scanner v{VERSION}")


if __name__ == "__main__":
    try:
        cli()
    except Exception as e:
        logger.exception("An unexpected error occurred")
        console.print(f"\n[bold red]An error occurred: {str(e)}[/bold red]")
        sys.exit(1)
