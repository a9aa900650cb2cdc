"""Variable-like symbols from a disassembly listing and workspace lookup."""

import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Union

from haltline.core.types import ElfSymbol, VariableInfo, normalize_address

logger = logging.getLogger(__name__)

DISASSEMBLY_FILENAME = "full_disasm.txt"
BUILD_DIRS = ("build", "out", "bin", "Debug", "Release")
ELF_SUFFIXES = (".out", ".elf")

VAR_DECL_RE = re.compile(
    r"^\s*(?:static\s+)?(?:const\s+)?(?:volatile\s+)?"
    r"(int|uint\w*|char|long|short|float|double|void\s*\*?)\s+(\w+)\s*[=;]"
)
SYMBOL_LABEL_RE = re.compile(r"^([0-9a-fA-F]{8})\s+<(\w+)>:")
DATA_WORD_RE = re.compile(r"^\s*([0-9a-fA-F]{8}):\s+[0-9a-fA-F]+\s+\.word\s+.*;\s*(\w+)")
NEARBY_ADDRESS_RE = re.compile(r"\b([0-9a-fA-F]{8})\b")
SOURCE_COMMENT_RE = re.compile(r"^;\s*(.+?):(\d+)(?:\s.*)?$")

# Names that look like code rather than data
FUNCTION_NAME_PATTERNS = [
    re.compile(r"^[A-Z]"),
    re.compile(r"^_start$"),
    re.compile(r"^main$"),
    re.compile(r"^__.*__$"),
    re.compile(r"Handler$"),
    re.compile(r"Callback$"),
]


def is_function_symbol(name: str) -> bool:
    return any(pattern.search(name) for pattern in FUNCTION_NAME_PATTERNS)


def infer_scope(name: str, line: str = "") -> str:
    """Guess a variable's scope from its declaration and naming."""
    if "static" in line or name.startswith(("s_", "static_")):
        return "static"
    if name.startswith(("g_", "global_")):
        return "global"
    return "local"


def _nearby_address(lines: List[str], start: int, window: int = 5) -> Optional[str]:
    for line in lines[start:start + window]:
        match = NEARBY_ADDRESS_RE.search(line)
        if match:
            return normalize_address(match.group(1))
    return None


def _source_location(lines: List[str], index: int, window: int = 10):
    for line in reversed(lines[max(0, index - window):index + 1]):
        match = SOURCE_COMMENT_RE.match(line)
        if match:
            return match.group(1).replace("\\", "/"), int(match.group(2))
    return None, None


def parse_disassembly_variables(text: str) -> List[VariableInfo]:
    """Extract variable-like symbols from listing text.

    Three sources are recognised: C declarations echoed from source with
    an address nearby, ``XXXXXXXX <name>:`` labels whose name does not look
    like a function, and ``.word`` data lines annotated with a name.
    Duplicates (same name and address) are dropped.
    """
    lines = text.splitlines()
    variables: List[VariableInfo] = []

    for index, line in enumerate(lines):
        decl = VAR_DECL_RE.match(line)
        if decl:
            name = decl.group(2)
            address = _nearby_address(lines, index)
            if address:
                file_path, line_number = _source_location(lines, index)
                variables.append(VariableInfo(
                    name=name,
                    address=address,
                    scope=infer_scope(name, line),
                    type=decl.group(1).replace(" ", ""),
                    file_path=file_path,
                    line=line_number,
                ))
            continue

        label = SYMBOL_LABEL_RE.match(line)
        if label:
            name = label.group(2)
            if not is_function_symbol(name):
                variables.append(VariableInfo(
                    name=name,
                    address=normalize_address(label.group(1)),
                    scope=infer_scope(name),
                ))
            continue

        data = DATA_WORD_RE.match(line)
        if data:
            variables.append(VariableInfo(
                name=data.group(2),
                address=normalize_address(data.group(1)),
                scope="global",
                type="word",
            ))

    return deduplicate(variables)


def parse_disassembly_file(path: Union[str, Path]) -> List[VariableInfo]:
    try:
        text = Path(path).read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.debug(f"Disassembly not readable: {path} ({e})")
        return []
    return parse_disassembly_variables(text)


def symbols_to_variables(symbols: List[ElfSymbol]) -> List[VariableInfo]:
    """Present ELF symbols the way the variables view expects them."""
    return deduplicate([
        VariableInfo(
            name=sym.name,
            address=sym.address,
            scope=sym.scope,
            type=sym.kind,
            size=sym.size,
        )
        for sym in symbols
    ])


def deduplicate(variables: List[VariableInfo]) -> List[VariableInfo]:
    seen: Dict[str, VariableInfo] = {}
    for var in variables:
        seen.setdefault(f"{var.name}_{var.address}", var)
    return list(seen.values())


def find_elf_file(workspace: Union[str, Path]) -> Optional[Path]:
    """First ``*.out``/``*.elf`` in the usual build directories."""
    root = Path(workspace)
    for dirname in BUILD_DIRS:
        build = root / dirname
        if not build.is_dir():
            continue
        for candidate in sorted(build.iterdir()):
            if candidate.is_file() and candidate.suffix in ELF_SUFFIXES:
                return candidate
    return None


def find_disassembly(workspace: Union[str, Path]) -> Optional[Path]:
    """``full_disasm.txt`` at the workspace root, if it exists."""
    path = Path(workspace) / DISASSEMBLY_FILENAME
    return path if path.is_file() else None
