"""ELF32 symbol-table reader.

Reads ``.symtab`` from a linked 32-bit little-endian image with pyelftools.
Anything that does not look like such an image yields an empty list so
callers can fall back to the disassembly listing.
"""

import io
import logging
import struct
from pathlib import Path
from typing import List, Union

from elftools.common.exceptions import ELFError
from elftools.elf.elffile import ELFFile
from elftools.elf.sections import SymbolTableSection

from haltline.core.errors import MalformedImage
from haltline.core.types import ElfSymbol, normalize_address

logger = logging.getLogger(__name__)

ELF_MAGIC = b"\x7fELF"
ELFCLASS32 = 1
ELFDATA2LSB = 1
ELF32_HEADER_SIZE = 0x34

# Raw st_info values, for callers building images by hand
STT_OBJECT = 1
STT_FUNC = 2

STB_LOCAL = 0
STB_GLOBAL = 1
STB_WEAK = 2

_KINDS = {"STT_FUNC": "function", "STT_OBJECT": "variable"}
_INTERNAL_PREFIXES = ("__", "$", ".")


def _is_internal(name: str) -> bool:
    return name.startswith(_INTERNAL_PREFIXES)


def _open_image(data: bytes) -> ELFFile:
    """Open an ELF32 LE image, rejecting other classes before parsing."""
    if len(data) < ELF32_HEADER_SIZE:
        raise MalformedImage("ELF header truncated")
    if data[4] != ELFCLASS32 or data[5] != ELFDATA2LSB:
        raise MalformedImage("Only 32-bit little-endian ELF files are supported")
    return ELFFile(io.BytesIO(data))


def _collect_symbols(elf: ELFFile) -> List[ElfSymbol]:
    symtab = elf.get_section_by_name(".symtab")
    if not isinstance(symtab, SymbolTableSection):
        logger.debug("No .symtab section in image")
        return []

    symbols = []
    for symbol in symtab.iter_symbols():
        kind = _KINDS.get(symbol["st_info"]["type"])
        if kind is None:
            continue
        if symbol["st_shndx"] == "SHN_UNDEF" or symbol["st_value"] == 0:
            continue

        name = symbol.name
        if not name or _is_internal(name):
            continue

        symbols.append(ElfSymbol(
            name=name,
            address=normalize_address(symbol["st_value"]),
            size=symbol["st_size"],
            scope="local" if symbol["st_info"]["bind"] == "STB_LOCAL" else "global",
            kind=kind,
        ))

    return symbols


def read_elf_symbols(data: bytes) -> List[ElfSymbol]:
    """Extract function and variable symbols from an ELF32 LE image.

    Args:
        data: Raw image bytes

    Returns:
        Symbols in table order; empty if the image is not ELF32 LE or is
        malformed
    """
    if data[:4] != ELF_MAGIC:
        logger.debug("Not an ELF image")
        return []

    try:
        return _collect_symbols(_open_image(data))
    except MalformedImage as e:
        logger.warning(str(e))
        return []
    except (ELFError, struct.error) as e:
        logger.warning(f"Malformed ELF image: {e}")
        return []


def read_elf_file(path: Union[str, Path]) -> List[ElfSymbol]:
    """Read symbols from an image on disk; missing files give an empty list."""
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        logger.warning(f"Cannot read ELF image {path}: {e}")
        return []
    return read_elf_symbols(data)
