"""Tests for the command-line interface."""

from unittest.mock import AsyncMock, patch

import pytest
from typer.testing import CliRunner

from haltline import __version__
from haltline.cli import _handle_shell_command, app, parse_location
from haltline.core.session import DebugSessionController
from haltline.core.types import DebugConfig
from haltline.symbols.elf_reader import STB_GLOBAL, STT_FUNC, STT_OBJECT

from conftest import build_elf32, st_info

runner = CliRunner()


class TestParseLocation:
    """Test breakpoint location parsing."""

    def test_file_line(self) -> None:
        decl = parse_location("src/main.c:10")
        assert (decl.file, decl.line) == ("src/main.c", 10)

    def test_windows_file_line(self) -> None:
        decl = parse_location("C:\\work\\main.c:42")
        assert (decl.file, decl.line) == ("C:\\work\\main.c", 42)

    def test_function(self) -> None:
        assert parse_location("DL_GPIO_setPins").function == "DL_GPIO_setPins"


class TestSymbolCommands:
    """Test the offline lookup commands."""

    def test_version(self) -> None:
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_resolve_line(self, disassembly_file) -> None:
        result = runner.invoke(app, ["resolve", str(disassembly_file), "main.c:10"])
        assert result.exit_code == 0
        assert "0x132" in result.output

    def test_resolve_function(self, disassembly_file) -> None:
        result = runner.invoke(app, ["resolve", str(disassembly_file), "DL_GPIO_setPins"])
        assert result.exit_code == 0
        assert "0x274" in result.output

    def test_resolve_unknown(self, disassembly_file) -> None:
        result = runner.invoke(app, ["resolve", str(disassembly_file), "main.c:99"])
        assert result.exit_code == 1

    def test_where(self, disassembly_file) -> None:
        result = runner.invoke(app, ["where", str(disassembly_file), "0x00000132"])
        assert result.exit_code == 0
        assert "main.c:10" in result.output

    def test_where_inside_function(self, disassembly_file) -> None:
        result = runner.invoke(app, ["where", str(disassembly_file), "0x136"])
        assert result.exit_code == 0
        assert "main" in result.output

    def test_where_invalid_address(self, disassembly_file) -> None:
        result = runner.invoke(app, ["where", str(disassembly_file), "zzz"])
        assert result.exit_code == 1

    def test_lines(self, disassembly_file) -> None:
        result = runner.invoke(app, ["lines", str(disassembly_file)])
        assert result.exit_code == 0
        assert "0x138" in result.output

    def test_missing_listing(self, tmp_path) -> None:
        result = runner.invoke(app, ["lines", str(tmp_path / "full_disasm.txt")])
        assert result.exit_code == 1

    def test_symbols(self, tmp_path) -> None:
        image = tmp_path / "blinky.out"
        image.write_bytes(build_elf32([
            ("main", 0x121, 24, st_info(STB_GLOBAL, STT_FUNC), 1),
            ("g_counter", 0x20000000, 4, st_info(STB_GLOBAL, STT_OBJECT), 2),
        ]))
        result = runner.invoke(app, ["symbols", str(image), "--filter", "g_"])
        assert result.exit_code == 0
        assert "g_counter" in result.output
        assert "main" not in result.output


class TestShellCommands:
    """Test the interactive shell dispatcher."""

    @pytest.fixture
    def controller(self, mock_executor) -> DebugSessionController:
        return DebugSessionController(
            config=DebugConfig(allow_offline=True, liveness_interval=0),
            executor=mock_executor,
            board_enumerator=AsyncMock(return_value=[]),
        )

    @pytest.mark.asyncio
    async def test_exit(self, controller: DebugSessionController) -> None:
        assert await _handle_shell_command("quit", controller) is False
        assert await _handle_shell_command("", controller) is True

    @pytest.mark.asyncio
    async def test_start_and_regs(self, controller: DebugSessionController) -> None:
        assert await _handle_shell_command("start", controller) is True
        assert controller.active is True
        assert await _handle_shell_command("regs", controller) is True
        assert await _handle_shell_command("vars", controller) is True
        assert await _handle_shell_command("stop", controller) is True
        assert controller.active is False

    @pytest.mark.asyncio
    async def test_errors_keep_shell_running(self, controller: DebugSessionController) -> None:
        """Test debugger errors are reported, not raised."""
        assert await _handle_shell_command("halt", controller) is True
        await _handle_shell_command("start", controller)
        assert await _handle_shell_command("halt", controller) is True
        assert await _handle_shell_command("mem not-hex", controller) is True
        assert await _handle_shell_command("bogus", controller) is True
        assert controller.active is True


class TestDoctor:
    """Test the setup check command."""

    def test_workspace_outputs(self, disassembly_file) -> None:
        """Test the listing and image in a workspace are reported."""
        workspace = disassembly_file.parent
        (workspace / "Debug").mkdir()
        (workspace / "Debug" / "blinky.out").write_bytes(b"\x7fELF")

        with patch("haltline.cli.shutil.which", return_value="/usr/bin/swd-debugger"), \
             patch("haltline.tools.boards.list_serial_boards", new=AsyncMock(return_value=[])):
            result = runner.invoke(app, ["doctor", "--workspace", str(workspace)])

        assert result.exit_code == 0
        assert "Disassembly listing" in result.output
        assert "Linked image" in result.output
        assert "No boards detected" in result.output

    def test_missing_probe_fails(self, tmp_path) -> None:
        with patch("haltline.cli.shutil.which", return_value=None), \
             patch("haltline.tools.boards.list_serial_boards", new=AsyncMock(return_value=[])):
            result = runner.invoke(app, ["doctor", "--workspace", str(tmp_path)])

        assert result.exit_code == 1
        assert "Debug probe not found" in result.output
        assert "No full_disasm.txt" in result.output
