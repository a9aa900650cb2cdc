"""Tests for board enumeration and session configuration."""

from types import SimpleNamespace
from unittest.mock import patch

import pytest

from haltline.core.types import OFFLINE_BOARD, BoardInfo, DebugConfig, DebugSession
from haltline.tools.boards import list_serial_boards, pick_default_board


def _port(device, vid=None, pid=None, description="n/a"):
    return SimpleNamespace(
        device=device, vid=vid, pid=pid, description=description,
        manufacturer="Texas Instruments" if vid == 0x0451 else None,
        serial_number="L1100ABC" if vid else None,
    )


class TestListSerialBoards:
    """Test pyserial-backed enumeration."""

    @pytest.mark.asyncio
    async def test_lists_usb_ports(self) -> None:
        ports = [
            _port("/dev/ttyACM0", vid=0x0451, pid=0xBEF3, description="XDS110"),
            _port("/dev/ttyS0"),
            _port("/dev/ttyUSB0"),
        ]
        with patch("haltline.tools.boards.list_ports.comports", return_value=ports):
            boards = await list_serial_boards()

        assert [b.port for b in boards] == ["/dev/ttyACM0", "/dev/ttyUSB0"]
        assert boards[0].vendor_id == "0451"
        assert boards[0].product_id == "bef3"
        assert boards[0].friendly_name == "XDS110 (/dev/ttyACM0)"

    @pytest.mark.asyncio
    async def test_no_ports(self) -> None:
        with patch("haltline.tools.boards.list_ports.comports", return_value=[]):
            assert await list_serial_boards() == []


class TestPickDefaultBoard:
    """Test default board selection."""

    def test_preferred_port(self) -> None:
        boards = [BoardInfo(port="COM3", vendor_id="0451"), BoardInfo(port="COM4")]
        assert pick_default_board(boards, "COM4").port == "COM4"

    def test_preferred_port_missing_falls_back(self) -> None:
        boards = [BoardInfo(port="COM3")]
        assert pick_default_board(boards, "COM9").port == "COM3"

    def test_ti_board_first(self) -> None:
        boards = [BoardInfo(port="COM3", vendor_id="1a86"), BoardInfo(port="COM4", vendor_id="0451")]
        assert pick_default_board(boards).port == "COM4"

    def test_no_boards(self) -> None:
        assert pick_default_board([]) is None


class TestDebugConfig:
    """Test DebugConfig defaults and environment loading."""

    def test_default_values(self) -> None:
        config = DebugConfig()
        assert config.probe_path == "swd-debugger"
        assert config.port is None
        assert config.command_timeout == 10.0
        assert config.liveness_interval == 5.0
        assert config.disconnect_threshold == 5
        assert config.terminate_grace == 0.5
        assert config.breakpoint_capacity == 4
        assert config.allow_offline is False

    def test_from_env(self, monkeypatch) -> None:
        monkeypatch.setenv("HALTLINE_PROBE_PATH", "/opt/ti/swd-debugger")
        monkeypatch.setenv("HALTLINE_PORT", "COM5")
        monkeypatch.setenv("HALTLINE_TIMEOUT", "2.5")
        monkeypatch.setenv("HALTLINE_VERBOSE", "yes")
        monkeypatch.setenv("HALTLINE_ALLOW_OFFLINE", "1")
        monkeypatch.setenv("HALTLINE_LIVENESS_INTERVAL", "1")
        monkeypatch.setenv("HALTLINE_DISCONNECT_THRESHOLD", "3")

        config = DebugConfig.from_env()

        assert config.probe_path == "/opt/ti/swd-debugger"
        assert config.port == "COM5"
        assert config.command_timeout == 2.5
        assert config.verbose is True
        assert config.allow_offline is True
        assert config.liveness_interval == 1.0
        assert config.disconnect_threshold == 3

    def test_from_env_defaults(self, monkeypatch) -> None:
        for name in ("HALTLINE_PORT", "HALTLINE_VERBOSE", "HALTLINE_PROBE_PATH"):
            monkeypatch.delenv(name, raising=False)
        config = DebugConfig.from_env()
        assert config.port is None
        assert config.verbose is False


class TestSessionRecord:
    """Test the session record."""

    def test_offline_flag(self) -> None:
        assert DebugSession(id="debug-1", board=OFFLINE_BOARD).offline is True
        assert DebugSession(id="debug-2", board=BoardInfo(port="COM3")).offline is False

    def test_friendly_name_defaults_to_port(self) -> None:
        assert BoardInfo(port="/dev/ttyACM0").friendly_name == "/dev/ttyACM0"
