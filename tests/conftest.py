"""Pytest fixtures for Haltline tests."""

import asyncio
import struct
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from unittest.mock import AsyncMock, Mock

import pytest

from haltline.core.types import BoardInfo, DebugConfig
from haltline.tools.probe import ProbeConfig

SAMPLE_DISASSEMBLY = """\
blinky.out:     file format elf32-littlearm

Disassembly of section .text:

000000c0 <SysTick_Handler>:
; /work/blinky/main.c:4
      c0: 4770          bx      lr

00000120 <main>:
; /work/blinky/main.c:8
     120: b580          push    {r7, lr}
     122: af00          add     r7, sp, #0x0
; /work/blinky/main.c:10
     12e: 4803          ldr     r0, [pc, #0xc]
     130: 2101          movs    r1, #0x1
     132: f000 f89f     bl      0x274 <DL_GPIO_setPins> @ imm = #0x13e
     136: 2001          movs    r0, #0x1
; /work/blinky/main.c:12
     138: e7fe          b       0x138 <main+0x18>

00000274 <DL_GPIO_setPins>:
; C:\\ti\\sdk\\dl_gpio.h:1000
     274: 6001          str     r1, [r0]
     276: 4770          bx      lr

Disassembly of section .data:

20000000 <g_counter>:
20000004 <s_state>:
00000140: 20000008     .word   0x20000008 ; g_ticks
"""

REGISTER_OUTPUT = """\
R0: 0x00000001
R1: 0x20000000
SP: 0x20003ff0
LR: 0x00000137
PC: 0x00000132
XPSR: 0x61000000
"""

TI_BOARD = BoardInfo(port="/dev/ttyACM0", friendly_name="XDS110 (/dev/ttyACM0)", vendor_id="0451")

ElfSymbolSpec = Tuple[str, int, int, int, int]  # name, value, size, info, shndx


def st_info(bind: int, sym_type: int) -> int:
    return (bind << 4) | sym_type


def build_elf32(
    symbols: Sequence[ElfSymbolSpec],
    elf_class: int = 1,
    data_encoding: int = 1,
) -> bytes:
    """Build a minimal ELF32 image with .symtab, .strtab and .shstrtab."""
    strtab = bytearray(b"\x00")
    name_offsets = []
    for name, *_ in symbols:
        name_offsets.append(len(strtab))
        strtab += name.encode() + b"\x00"

    shstrtab = b"\x00.symtab\x00.strtab\x00.shstrtab\x00"
    symtab = bytearray(16 * (len(symbols) + 1))
    for index, (name, value, size, info, shndx) in enumerate(symbols, start=1):
        struct.pack_into("<IIIBBH", symtab, index * 16,
                         name_offsets[index - 1], value, size, info, 0, shndx)

    def align(n: int) -> int:
        return (n + 3) & ~3

    strtab_off = 0x34
    shstrtab_off = strtab_off + len(strtab)
    symtab_off = align(shstrtab_off + len(shstrtab))
    shoff = align(symtab_off + len(symtab))

    image = bytearray(shoff + 4 * 40)
    image[0:4] = b"\x7fELF"
    image[4] = elf_class
    image[5] = data_encoding
    image[6] = 1
    struct.pack_into("<HHI", image, 0x10, 2, 40, 1)
    struct.pack_into("<I", image, 0x20, shoff)
    struct.pack_into("<HHHHHH", image, 0x28, 0x34, 0, 0, 40, 4, 3)

    image[strtab_off:strtab_off + len(strtab)] = strtab
    image[shstrtab_off:shstrtab_off + len(shstrtab)] = shstrtab
    image[symtab_off:symtab_off + len(symtab)] = symtab

    # null, .symtab, .strtab, .shstrtab
    struct.pack_into("<IIIIIIIIII", image, shoff + 40,
                     1, 2, 0, 0, symtab_off, len(symtab), 2, 1, 4, 16)
    struct.pack_into("<IIIIIIIIII", image, shoff + 80,
                     9, 3, 0, 0, strtab_off, len(strtab), 0, 0, 1, 0)
    struct.pack_into("<IIIIIIIIII", image, shoff + 120,
                     17, 3, 0, 0, shstrtab_off, len(shstrtab), 0, 0, 1, 0)
    return bytes(image)


class FakeProcess:
    """Stands in for an asyncio subprocess with streamed pipes."""

    def __init__(self, pid: int = 4242) -> None:
        self.pid = pid
        self.returncode: Optional[int] = None
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self._exited = asyncio.Event()
        self.terminate = Mock(side_effect=lambda: self._finish(-15))
        self.kill = Mock(side_effect=lambda: self._finish(-9))

    def _finish(self, code: int) -> None:
        if self.returncode is not None:
            return
        self.returncode = code
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        assert self.returncode is not None
        return self.returncode


class FakeProbe:
    """Scripted probe: records commands and answers from a table."""

    def __init__(self, responses: Optional[Dict[str, str]] = None) -> None:
        self.commands: List[List[str]] = []
        self.responses = {
            "halt": "Target halted\n",
            "step": "Step complete\n",
            "read-all": REGISTER_OUTPUT,
            "read-reg": "Register value: 0x00000132\n",
            "read": "0xdeadbeef\n",
            "write": "OK\n",
            "bp": "",
        }
        self.responses.update(responses or {})

    async def run(self, args: List[str], timeout: Optional[float] = None) -> str:
        self.commands.append(list(args))
        response = self.responses.get(args[0], "")
        if isinstance(response, BaseException):
            raise response
        return response


@pytest.fixture
def sample_disassembly() -> str:
    return SAMPLE_DISASSEMBLY


@pytest.fixture
def disassembly_file(tmp_path):
    """Write the sample listing as full_disasm.txt in a workspace."""
    path = tmp_path / "full_disasm.txt"
    path.write_text(SAMPLE_DISASSEMBLY)
    return path


@pytest.fixture
def elf_builder() -> Callable[..., bytes]:
    return build_elf32


@pytest.fixture
def debug_config() -> DebugConfig:
    """Configuration with the liveness task disabled."""
    return DebugConfig(liveness_interval=0, terminate_grace=0.05)


@pytest.fixture
def fake_probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def mock_executor(fake_probe: FakeProbe) -> Mock:
    """Executor mock backed by a scripted probe."""
    executor = Mock()
    executor.config = ProbeConfig()
    executor.check_available = Mock(return_value="/usr/bin/swd-debugger")
    executor.run = AsyncMock(side_effect=fake_probe.run)
    executor.spawn = AsyncMock()
    executor.kill = AsyncMock()
    return executor


@pytest.fixture
def board_enumerator() -> AsyncMock:
    return AsyncMock(return_value=[TI_BOARD])


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the event loop until ``predicate`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)
