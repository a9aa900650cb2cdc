"""Command-line interface for Haltline."""

import asyncio
import logging
import os
import shutil
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from haltline.core.errors import DebugError
from haltline.core.events import SessionEvent
from haltline.core.session import DebugSessionController
from haltline.core.types import BreakpointDeclaration, DebugConfig, normalize_address
from haltline.symbols.address_mapper import AddressMapper
from haltline.symbols.disasm_symbols import find_disassembly, find_elf_file
from haltline.symbols.elf_reader import read_elf_file

app = typer.Typer(
    name="haltline",
    help="Hardware debugger for Cortex-M boards driven through a serial debug probe",
)
console = Console()

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(verbose: bool = False) -> None:
    """Send log records to stderr (or ``HALTLINE_LOG_FILE``)."""
    log_level = logging.WARNING
    log_level_str = os.environ.get("HALTLINE_LOG_LEVEL", "WARNING").upper()
    if log_level_str in ("DEBUG", "INFO", "WARNING", "ERROR"):
        log_level = getattr(logging, log_level_str)
    if verbose:
        log_level = logging.DEBUG

    log_file = os.environ.get("HALTLINE_LOG_FILE")
    if log_file:
        handler: logging.Handler = logging.FileHandler(log_file)
    else:
        handler = logging.StreamHandler(sys.stderr)

    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(log_level)


def parse_location(text: str) -> BreakpointDeclaration:
    """``file:line`` or a function name."""
    file, sep, line = text.strip().rpartition(":")
    if sep and file and line.isdigit():
        return BreakpointDeclaration(file=file, line=int(line))
    return BreakpointDeclaration(function=text.strip())


def _load_mapper(listing: Path) -> AddressMapper:
    if not listing.exists():
        console.print(f"[red]Error: disassembly file not found: {listing}[/red]")
        raise typer.Exit(1)
    mapper = AddressMapper()
    if not mapper.load_file(listing):
        console.print(f"[yellow]No line mappings found in {listing}[/yellow]")
    return mapper


# ============================================================================
# Offline symbol commands
# ============================================================================


@app.command()
def symbols(
    image: Path = typer.Argument(..., help="Path to the linked ELF image"),
    name_filter: Optional[str] = typer.Option(None, "--filter", "-f", help="Substring to match"),
) -> None:
    """List functions and data objects from an ELF symbol table."""
    if not image.exists():
        console.print(f"[red]Error: ELF file not found: {image}[/red]")
        raise typer.Exit(1)

    found = read_elf_file(image)
    if name_filter:
        found = [sym for sym in found if name_filter in sym.name]
    if not found:
        console.print("[dim]No symbols found.[/dim]")
        return

    table = Table(title=f"Symbols in {image.name}")
    table.add_column("Name", style="cyan")
    table.add_column("Address", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Kind")
    table.add_column("Scope")
    for sym in sorted(found, key=lambda s: int(s.address, 16)):
        table.add_row(sym.name, sym.address, str(sym.size), sym.kind, sym.scope)
    console.print(table)


@app.command()
def lines(
    listing: Path = typer.Argument(..., help="Path to the disassembly listing"),
    file_filter: Optional[str] = typer.Option(None, "--file", help="Only lines from this file"),
) -> None:
    """Show the source line to address map built from a listing."""
    mapper = _load_mapper(listing)
    mappings = mapper.line_mappings()
    if file_filter:
        mappings = [m for m in mappings if m.file.endswith(file_filter.replace("\\", "/"))]

    table = Table(title=f"Line map ({mapper.stats()['total_mappings']} mappings)")
    table.add_column("File", style="cyan")
    table.add_column("Line", justify="right")
    table.add_column("Address", justify="right")
    table.add_column("Function")
    for m in mappings:
        table.add_row(m.file, str(m.line), m.address, m.function or "")
    console.print(table)


@app.command()
def resolve(
    listing: Path = typer.Argument(..., help="Path to the disassembly listing"),
    location: str = typer.Argument(..., help="file:line or function name"),
) -> None:
    """Resolve a source location to an instruction address."""
    mapper = _load_mapper(listing)
    decl = parse_location(location)
    translation = mapper.translate([decl])
    if not translation.resolved:
        console.print(f"[red]No address for {decl.location}[/red]")
        raise typer.Exit(1)
    console.print(f"{decl.location} -> [bold]{translation.resolved[0].address}[/bold]")


@app.command()
def where(
    listing: Path = typer.Argument(..., help="Path to the disassembly listing"),
    address: str = typer.Argument(..., help="Instruction address (hex)"),
) -> None:
    """Find the source line for an instruction address."""
    mapper = _load_mapper(listing)
    try:
        normalized = normalize_address(address)
    except ValueError:
        console.print(f"[red]Invalid address: {address}[/red]")
        raise typer.Exit(1)

    entry = mapper.reverse_resolve(normalized)
    if entry is not None:
        suffix = f" in {entry.function}" if entry.function else ""
        console.print(f"{normalized} -> [bold]{entry.file}:{entry.line}[/bold]{suffix}")
        return

    function = mapper.function_at(normalized)
    if function:
        console.print(f"{normalized} -> [yellow]no line entry[/yellow], inside {function}")
    else:
        console.print(f"[red]No source location for {normalized}[/red]")
        raise typer.Exit(1)


# ============================================================================
# Shell Command (interactive session)
# ============================================================================

SHELL_HELP = (
    "[bold]Session:[/bold]\n"
    "  start [port]          - Start a session (auto-detects the board)\n"
    "  stop                  - Stop the session\n"
    "  exit, quit, q         - Exit shell\n\n"
    "[bold]Execution:[/bold]\n"
    "  halt                  - Halt the target\n"
    "  c, continue           - Resume until a breakpoint\n"
    "  s, step               - Single step\n\n"
    "[bold]Registers and memory:[/bold]\n"
    "  regs                  - Show all registers\n"
    "  reg <name>            - Show single register\n"
    "  mem <addr>            - Read memory\n"
    "  write <addr> <value>  - Write memory\n\n"
    "[bold]Breakpoints:[/bold]\n"
    "  bp <file:line|func|addr> - Set breakpoint\n"
    "  bp-list               - Show hardware slots\n"
    "  bp-clear <slot|loc>   - Clear breakpoint\n\n"
    "[bold]Source:[/bold]\n"
    "  where                 - Source line of the PC\n"
    "  vars                  - Show variables"
)


def _print_registers(registers) -> None:
    for reg in registers:
        console.print(f"  {reg.name:6} = {reg.value:<12} [dim]{reg.description or ''}[/dim]")


async def _handle_shell_command(cmd: str, controller: DebugSessionController) -> bool:
    """Handle shell commands. Returns False if should exit."""
    cmd = cmd.strip()

    if not cmd:
        return True

    if cmd in ("exit", "quit", "q"):
        return False

    parts = cmd.split(maxsplit=1)
    command = parts[0].lower()
    args_str = parts[1].strip() if len(parts) > 1 else ""

    try:
        if command in ("help", "?"):
            console.print(Panel(SHELL_HELP, title="Commands"))

        elif command == "start":
            session = await controller.start(args_str or None)
            console.print(f"[green]Session {session.id} on {session.board.friendly_name}[/green]")

        elif command == "stop":
            await controller.stop()
            console.print("Session stopped")

        elif command == "halt":
            registers = await controller.halt()
            console.print("Halted")
            _print_registers(registers)

        elif command in ("c", "continue"):
            await controller.resume()
            console.print("[dim]Running... (halt or wait for a breakpoint)[/dim]")

        elif command in ("s", "step"):
            registers = await controller.step()
            pc = next((r.value for r in registers if r.name == "PC"), "??")
            console.print(f"Stepped to {pc}")

        elif command == "regs":
            _print_registers(await controller.read_all_registers())

        elif command == "reg":
            if not args_str:
                console.print("[red]Usage: reg <name>[/red]")
            else:
                value = await controller.read_register(args_str)
                console.print(f"  {args_str} = {value}")

        elif command == "mem":
            if not args_str:
                console.print("[red]Usage: mem <address>[/red]")
            else:
                result = await controller.read_memory(normalize_address(args_str.split()[0]))
                console.print(f"  {result.address}: {result.data}")

        elif command == "write":
            write_args = args_str.split()
            if len(write_args) != 2:
                console.print("[red]Usage: write <address> <value>[/red]")
            else:
                address = normalize_address(write_args[0])
                await controller.write_memory(address, write_args[1])
                console.print(f"[green]Wrote {write_args[1]} to {address}[/green]")

        elif command == "bp":
            if not args_str:
                console.print("[red]Usage: bp <file:line|function|address>[/red]")
            elif args_str.lower().startswith("0x"):
                await controller.breakpoints.set_enabled(args_str, True)
                console.print(f"Breakpoint at {normalize_address(args_str)}")
            else:
                decl = parse_location(args_str)
                controller.breakpoints.declare(decl)
                slot = await controller.breakpoints.arm(decl)
                console.print(f"Breakpoint {slot.slot} at {slot.address} ({decl.location})")

        elif command == "bp-list":
            slots = await controller.breakpoints.refresh()
            if not slots:
                console.print("[dim]No hardware breakpoints set.[/dim]")
            for slot in slots:
                entry = controller.mapper.reverse_resolve(slot.address)
                where_text = f" {entry.file}:{entry.line}" if entry else ""
                console.print(f"  Slot {slot.slot}: {slot.address}{where_text}")

        elif command == "bp-clear":
            if not args_str:
                console.print("[red]Usage: bp-clear <slot|file:line|function|address>[/red]")
            elif args_str.isdigit():
                await controller.breakpoints.clear_slot(int(args_str))
                console.print(f"Cleared slot {args_str}")
            elif args_str.lower().startswith("0x"):
                await controller.breakpoints.set_enabled(args_str, False)
                console.print(f"Cleared breakpoint at {normalize_address(args_str)}")
            else:
                await controller.breakpoints.remove(parse_location(args_str))
                console.print(f"Removed breakpoint {args_str}")

        elif command == "where":
            location = await controller.current_location()
            if location is None:
                console.print("[yellow]PC is not on a known source line[/yellow]")
            else:
                console.print(f"  {location.file}:{location.line} ({location.function or '??'})")

        elif command == "vars":
            snapshot = await controller.get_variables()
            console.print(f"[bold]Variables[/bold] [dim](from {snapshot.source})[/dim]")
            for var in snapshot.variables:
                value = f" = {var.value}" if var.value else ""
                console.print(f"  [{var.scope}] {var.name} @ {var.address or '-'}{value}")

        else:
            console.print(f"[red]Unknown command: {command}. Type 'help' for help.[/red]")

    except (DebugError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")

    return True


def _print_event(event: SessionEvent) -> None:
    if event is SessionEvent.DEVICE_DISCONNECTED:
        console.print("\n[bold red]Device disconnected - session ended[/bold red]")
    elif event is SessionEvent.BREAKPOINT_HIT:
        console.print("\n[bold yellow]Breakpoint hit[/bold yellow]")


async def _run_shell_session(config: DebugConfig, workspace: Path, start: bool) -> None:
    """Run an interactive shell session."""
    controller = DebugSessionController(config)
    if config.disassembly_path is None:
        controller.mapper.load_workspace(workspace)
    controller.subscribe(_print_event)

    console.print(Panel(
        f"[bold]Probe:[/bold] {config.probe_path}\n"
        f"[bold]Port:[/bold] {config.port or 'auto-detect'}\n"
        f"[bold]Disassembly:[/bold] {controller.mapper.disassembly_path or 'none'}\n"
        f"[bold]ELF:[/bold] {config.elf_path or 'none'}",
        title="[bold blue]Haltline Shell[/bold blue]",
    ))

    try:
        if start:
            await _handle_shell_command("start", controller)
        console.print("[green]Type 'help' for commands.[/green]\n")

        while True:
            try:
                # Prompt in a worker thread so monitor and liveness tasks keep running
                user_input = await asyncio.to_thread(Prompt.ask, "[bold cyan]hl>[/bold cyan]")
            except (KeyboardInterrupt, EOFError):
                console.print("\n[yellow]Exiting...[/yellow]")
                break

            should_continue = await _handle_shell_command(user_input, controller)
            if not should_continue:
                console.print("[yellow]Ending session...[/yellow]")
                break
    finally:
        await controller.stop()


@app.command()
def shell(
    port: Optional[str] = typer.Option(None, "--port", "-p", help="Serial port of the board",
                                       envvar="HALTLINE_PORT"),
    probe_path: str = typer.Option("swd-debugger", "--probe-path", help="Debug probe executable",
                                   envvar="HALTLINE_PROBE_PATH"),
    workspace: Path = typer.Option(Path("."), "--workspace", "-w",
                                   help="Project root holding full_disasm.txt and build output"),
    disasm: Optional[Path] = typer.Option(None, "--disasm", help="Disassembly listing"),
    elf: Optional[Path] = typer.Option(None, "--elf", help="Linked ELF image"),
    timeout: float = typer.Option(10.0, "--timeout", help="Probe command timeout (s)",
                                  envvar="HALTLINE_TIMEOUT"),
    offline: bool = typer.Option(False, "--offline", help="Allow a session without a board",
                                 envvar="HALTLINE_ALLOW_OFFLINE"),
    start: bool = typer.Option(True, "--start/--no-start", help="Start a session immediately"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Start an interactive debugging shell."""
    configure_logging(verbose)

    config = DebugConfig.from_env()
    config.port = port
    config.probe_path = probe_path
    config.command_timeout = timeout
    config.allow_offline = offline
    config.verbose = verbose
    config.disassembly_path = str(disasm) if disasm else None
    elf_path = elf or find_elf_file(workspace)
    config.elf_path = str(elf_path) if elf_path else None

    asyncio.run(_run_shell_session(config, workspace, start))


# ============================================================================
# Doctor / Version
# ============================================================================


@app.command()
def doctor(
    probe_path: str = typer.Option("swd-debugger", "--probe-path", help="Debug probe executable",
                                   envvar="HALTLINE_PROBE_PATH"),
    workspace: Optional[Path] = typer.Option(None, "--workspace", "-w",
                                             help="Project root to check for build outputs"),
) -> None:
    """Check the probe, attached boards and workspace build outputs."""
    from haltline.tools.boards import list_serial_boards

    console.print(Panel("[bold]Checking setup...[/bold]", title="[bold blue]Haltline Doctor[/bold blue]"))

    probe = shutil.which(probe_path)
    if probe:
        console.print(f"[green]✓[/green] Debug probe (at {probe})")
    else:
        console.print(f"[red]✗[/red] Debug probe not found: {probe_path}")
        console.print("    [dim]Set --probe-path or HALTLINE_PROBE_PATH[/dim]")

    boards = asyncio.run(list_serial_boards())
    for board in boards:
        console.print(f"[green]✓[/green] Board on {board.port} ({board.friendly_name})")
    if not boards:
        console.print("[yellow]![/yellow] No boards detected")
        console.print("    [dim]Connect a board or use 'shell --offline'[/dim]")

    if workspace is not None:
        listing = find_disassembly(workspace)
        if listing:
            console.print(f"[green]✓[/green] Disassembly listing: {listing}")
        else:
            console.print(f"[yellow]![/yellow] No full_disasm.txt in {workspace}")
            console.print("    [dim]Source line breakpoints need the listing[/dim]")
        image = find_elf_file(workspace)
        if image:
            console.print(f"[green]✓[/green] Linked image: {image}")
        else:
            console.print(f"[yellow]![/yellow] No .out/.elf image under {workspace}")

    if not probe:
        raise typer.Exit(1)


@app.command()
def version() -> None:
    """Show version information."""
    from haltline import __version__
    console.print(f"[bold blue]Haltline[/bold blue] v{__version__}")


if __name__ == "__main__":
    app()
