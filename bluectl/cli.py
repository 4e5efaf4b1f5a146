"""Typer CLI entrypoint."""

from __future__ import annotations

import logging

import typer

from bluectl.core.address import to_wire
from bluectl.core.config import load_settings
from bluectl.core.errors import BluectlError
from bluectl.core.model import GIAC, LIAC, DiscoverableMode, InquiryStatus, SearchStatus
from bluectl.core.service import BluetoothService

app = typer.Typer(help="Bluetooth adapter control, device inquiry and service search via BlueZ")

_MODES = {
    "off": DiscoverableMode.NOT_DISCOVERABLE,
    "general": DiscoverableMode.GIAC,
    "limited": DiscoverableMode.LIAC,
}


@app.callback()
def main(
    ctx: typer.Context,
    adapter: str | None = typer.Option(None, "--adapter", help="Adapter id (hci0) or index (0)"),
    address: str | None = typer.Option(None, "--address", help="Local adapter address"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {"adapter": adapter, "address": address}


def _build_service(ctx: typer.Context) -> BluetoothService:
    options = ctx.obj or {}
    settings = load_settings(device_id=options.get("adapter"), device_address=options.get("address"))
    service = BluetoothService(settings=settings)
    for warning in getattr(service, "runtime_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return service


def _fail(exc: BluectlError) -> typer.Exit:
    typer.echo(f"Error: {exc}", err=True)
    return typer.Exit(code=1)


@app.command("adapters")
def list_adapters(ctx: typer.Context) -> None:
    """List local Bluetooth adapters."""
    try:
        with _build_service(ctx) as service:
            for adapter_id in service.adapter.list_adapters():
                marker = "*" if adapter_id == service.adapter.identity.device_id else " "
                typer.echo(f"{marker} {adapter_id}")
    except BluectlError as exc:
        raise _fail(exc) from None


@app.command("info")
def show_info(ctx: typer.Context) -> None:
    """Show the selected adapter's address, name, class and mode."""
    try:
        with _build_service(ctx) as service:
            adapter = service.adapter
            typer.echo(f"Adapter: {adapter.identity.device_id} ({adapter.identity.path})")
            typer.echo(f"Address: {to_wire(adapter.local_address)}")
            typer.echo(f"Name: {adapter.local_name() or '<unknown>'}")
            typer.echo(f"Class: {adapter.device_class().value:#08x}")
            typer.echo(f"Powered: {'yes' if adapter.is_powered_on() else 'no'}")
            typer.echo(f"Discoverable: {adapter.discoverable_mode().name.lower()}")
    except BluectlError as exc:
        raise _fail(exc) from None


@app.command("scan")
def scan(
    ctx: typer.Context,
    limited: bool = typer.Option(False, "--limited", help="Use the limited inquiry access code"),
) -> None:
    """Run one device inquiry and list the devices found."""
    try:
        with _build_service(ctx) as service:
            result = service.discover(access_code=LIAC if limited else GIAC)
    except BluectlError as exc:
        raise _fail(exc) from None

    if result.status is InquiryStatus.FAILED:
        typer.echo(f"Error: Device inquiry failed: {result.error}", err=True)
        raise typer.Exit(code=1)
    if result.status is InquiryStatus.TERMINATED:
        typer.echo("Inquiry terminated")
        return
    if not result.devices:
        typer.echo("No Bluetooth devices found")
        return
    for device in result.devices:
        device_class = f"{device.device_class.value:#08x}" if device.device_class else "-"
        paired = " paired" if device.paired else ""
        typer.echo(f"{to_wire(device.address)} {device.name or '<unknown-device>'} class={device_class}{paired}")


@app.command("name")
def friendly_name(ctx: typer.Context, address: str) -> None:
    """Ask a remote device for its friendly name."""
    try:
        with _build_service(ctx) as service:
            typer.echo(service.friendly_name(address))
    except BluectlError as exc:
        raise _fail(exc) from None


@app.command("services")
def services(
    ctx: typer.Context,
    address: str,
    uuid: list[str] | None = typer.Option(None, "--uuid", help="Required service or protocol UUID"),
) -> None:
    """Search a remote device's services, keeping those that match every --uuid."""
    try:
        with _build_service(ctx) as service:
            result = service.search_services(uuid or [], address)
    except BluectlError as exc:
        raise _fail(exc) from None

    if result.status in (SearchStatus.ERROR, SearchStatus.DEVICE_NOT_REACHABLE):
        typer.echo(f"Error: Service search failed ({result.status.value})", err=True)
        raise typer.Exit(code=1)
    if result.status is SearchStatus.TERMINATED:
        typer.echo("Service search terminated")
        return
    if result.status is SearchStatus.NO_RECORDS:
        typer.echo("No matching services")
        return
    for record in result.records:
        endpoint = ""
        if record.rfcomm_channel is not None:
            endpoint = f" rfcomm={record.rfcomm_channel}"
        elif record.l2cap_psm is not None:
            endpoint = f" psm={record.l2cap_psm:#x}"
        classes = ", ".join(str(u) for u in record.service_class_uuids())
        typer.echo(f"{record.handle:#010x} {record.service_name or '<unnamed>'}{endpoint}")
        if classes:
            typer.echo(f"  classes: {classes}")


@app.command("discoverable")
def discoverable(ctx: typer.Context, mode: str) -> None:
    """Set the adapter's discoverable mode (off, general, limited)."""
    if mode not in _MODES:
        typer.echo(f"Error: Unknown mode '{mode}'. Allowed: {', '.join(_MODES)}", err=True)
        raise typer.Exit(code=1)
    try:
        with _build_service(ctx) as service:
            service.set_discoverable(_MODES[mode])
            typer.echo(f"Discoverable mode set to {mode}")
    except BluectlError as exc:
        raise _fail(exc) from None


@app.command("pair")
def pair(ctx: typer.Context, address: str) -> None:
    """Create a bonding with a remote device."""
    try:
        with _build_service(ctx) as service:
            service.pair(address)
            typer.echo(f"Bonded with {address}")
    except BluectlError as exc:
        raise _fail(exc) from None


@app.command("unpair")
def unpair(ctx: typer.Context, address: str) -> None:
    """Remove the bonding with a remote device."""
    try:
        with _build_service(ctx) as service:
            service.unpair(address)
            typer.echo(f"Removed bonding with {address}")
    except BluectlError as exc:
        raise _fail(exc) from None


@app.command("known")
def known_devices(ctx: typer.Context) -> None:
    """List bonded and trusted devices."""
    try:
        with _build_service(ctx) as service:
            devices = service.adapter.known_devices()
            if not devices:
                typer.echo("No known devices")
                return
            for device in devices:
                typer.echo(f"{to_wire(device.address)} {'bonded' if device.paired else 'trusted'}")
    except BluectlError as exc:
        raise _fail(exc) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
