#!/usr/bin/env python3
"""
Migrate VMware virtual machines from their VMDK disks.

On a host with access to the api and to the mounted VMDK stores, the disk
is uploaded as a temporary image, a server is booted from it and attached
to the requested networks with the requested macs, then the temporary
image is deleted.

Power off the VMware VM before migrating it (or use --shutdown so that
the new server is powered off) to avoid two machines with the same macs.
"""

import fnmatch
import os
import time
from typing import List

import typer

from stackman import log
from stackman.config import load_settings
from stackman.exceptions import PreconditionError, StackmanError
from stackman.loggers.logger import set_verbosity
from stackman.migration import MigrationOrchestrator
from stackman.models import MigrationRequest
from stackman.providers.openstack.session import OpenStackSession
from stackman.token_cache import TokenCache
from stackman.utils.netargs import parse_network_requests
from stackman.utils.output import format_summary

app = typer.Typer(help="Migrate VMware VMs from their VMDK disks")

#: the default mount point of the VMDK stores
DEFAULT_VMDK_ROOT = '/mnt/vmdk'

#: the suffixes of VMDK extent files, they are not disk descriptors
EXTENT_SUFFIXES = ('-flat.vmdk', '-delta.vmdk', '-sesparse.vmdk', '-ctk.vmdk')


def find_vmdks(pattern: str, root: str = DEFAULT_VMDK_ROOT) -> List[str]:
    """
    Find the VMDK descriptors under *root* whose file name matches *pattern*.

    The pattern is a case insensitive shell pattern, a plain word matches
    any file name that contains it.
    """
    if not any(c in pattern for c in '*?['):
        pattern = f'*{pattern}*'
    pattern = pattern.lower()

    matches = []
    for dirpath, _dirnames, filenames in os.walk(root):
        for filename in filenames:
            lower = filename.lower()
            if not lower.endswith('.vmdk') or lower.endswith(EXTENT_SUFFIXES):
                continue
            if fnmatch.fnmatch(lower, pattern):
                matches.append(os.path.join(dirpath, filename))
    return sorted(matches)


def find_single_vmdk(pattern: str, root: str = DEFAULT_VMDK_ROOT) -> str:
    """
    Return the only VMDK descriptor matching *pattern*.

    Raises:
        PreconditionError: when nothing or more than one file matches
    """
    matches = find_vmdks(pattern, root)
    if not matches:
        raise PreconditionError(f"no VMDK file matching '{pattern}' in {root}")
    if len(matches) > 1:
        raise PreconditionError(
            f"{len(matches)} VMDK files match '{pattern}' in {root}: {', '.join(matches)}")
    return matches[0]


@app.command()
def vm(
    name: str = typer.Option(..., "--name", help="Name of the new VM"),
    vmdk: str = typer.Option(..., "--vmdk", help="Local path to the VMDK file"),
    flavor: str = typer.Option(None, "--flavor", help="Flavor name or ID"),
    networks: str = typer.Option(None, "--networks", help="Comma-separated network names/IDs"),
    mac: str = typer.Option(
        ..., "--mac",
        help="Comma-separated MAC addresses, one per network (auto for a backend assigned one)"),
    size: int = typer.Option(None, "--size", help="Boot volume size in GiB (default: image size)"),
    disk_bus: str = typer.Option("scsi", "--disk-bus", help="Disk bus of the root volume: sata, scsi or virtio"),
    shutdown: bool = typer.Option(False, "--shutdown", help="Shut down the new VM after creation"),
    json_output: bool = typer.Option(False, "--json", help="Print the summary as json"),
    config: str = typer.Option(None, "--config", help="The settings file"),
    host: str = typer.Option(None, "--host", help="The control plane host"),
    debug: bool = typer.Option(False, "--debug", help="Log the api requests and responses"),
):
    """
    Migrate a virtual machine from a VMware VMDK.

    Example:

        stackman-migrate vm --name MyVM --vmdk /mnt/vmdk/myvm/myvm.vmdk \\
            --flavor myflavor --networks netA,netB --mac auto,bb:bb:bb:bb:bb:bb --shutdown
    """
    set_verbosity(debug)

    try:
        settings = load_settings(config).override(host=host)
        flavor = flavor or settings.flavor
        if not flavor:
            raise PreconditionError("no flavor specified; provide --flavor or set 'flavor'")
        if not settings.host:
            raise PreconditionError("no host configured; pass --host or set 'host' in the settings")

        request = MigrationRequest(
            name=name,
            vmdk_path=vmdk,
            flavor=flavor,
            networks=parse_network_requests(
                networks, macs=mac, via_port=True,
                default_networks=settings.networks, require_macs=True),
            volume_size=size,
            disk_bus=disk_bus,
            power_off=shutdown)

        token = TokenCache(settings.token_cache_dir).load_token(settings.host)
        orchestrator = MigrationOrchestrator(OpenStackSession(token, settings), settings)
        summary = orchestrator.migrate(request)
    except StackmanError as exc:
        log.error(str(exc))
        raise typer.Exit(code=1)

    typer.echo(format_summary(summary.to_dict(), as_json=json_output))


@app.command()
def find(
    pattern: str = typer.Argument(..., help="File name pattern of the VMDK to look for"),
    root: str = typer.Option(DEFAULT_VMDK_ROOT, "--root", help="The VMDK store to search"),
    single: bool = typer.Option(False, "--single", help="Expect exactly one match"),
):
    """
    Find the VMDK files matching a pattern in the VMDK store.
    """
    typer.echo(f"Searching for VMDK files matching '{pattern}' in {root}...")
    start = time.monotonic()
    try:
        matches = [find_single_vmdk(pattern, root)] if single else find_vmdks(pattern, root)
    except StackmanError as exc:
        log.error(str(exc))
        raise typer.Exit(code=1)
    typer.echo(f"Search completed in {time.monotonic() - start:.2f}s")

    if not matches:
        typer.echo("No matching VMDK files found.")
        return

    typer.echo("\nMatching VMDK files:")
    for match in matches:
        typer.echo(match)


def main():
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
