"""Symbol sources: ELF symbol tables and disassembly listings.

Example:
    from haltline.symbols import AddressMapper, read_elf_file

    mapper = AddressMapper()
    mapper.load_workspace("/work/blinky")
    print(mapper.resolve("main.c", 10))

    for sym in read_elf_file("build/blinky.out"):
        print(sym.name, sym.address)
"""

from haltline.symbols.elf_reader import read_elf_file, read_elf_symbols
from haltline.symbols.address_mapper import AddressMapper, BreakpointTranslation
from haltline.symbols.disasm_symbols import (
    find_disassembly,
    find_elf_file,
    parse_disassembly_file,
    parse_disassembly_variables,
    symbols_to_variables,
)

__all__ = [
    "read_elf_file",
    "read_elf_symbols",
    "AddressMapper",
    "BreakpointTranslation",
    "find_disassembly",
    "find_elf_file",
    "parse_disassembly_file",
    "parse_disassembly_variables",
    "symbols_to_variables",
]
