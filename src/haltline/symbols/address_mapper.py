"""Source line <-> address mapping from a disassembly listing.

The listing is the output of ``objdump -lS`` style disassemblers::

    00000120 <main>:
    ; /work/blinky/main.c:10
         132: f000 f89f     bl      0x274 <DL_GPIO_setPins> @ imm = #0x13e
         136: 2001          movs    r0, #0x1

Function labels seed a name -> address table. Each ``; file:line``
comment is mapped to the first instruction that follows it, or to the
first call instruction in the lookahead window when there is one: that
is where the program counter sits when the target halts on that line.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

from haltline.core.types import (
    BreakpointDeclaration,
    SourceLineAddress,
    normalize_address,
)
from haltline.symbols.disasm_symbols import DISASSEMBLY_FILENAME, find_disassembly

logger = logging.getLogger(__name__)

# Lines scanned after a source comment when looking for its instruction
LOOKAHEAD_LINES = 10

FUNCTION_LABEL_RE = re.compile(r"^([0-9a-fA-F]{8})\s+(?:<([^>]+)>|([^\s:<>]+)):\s*$")
SOURCE_COMMENT_RE = re.compile(r"^;\s*(.+?):(\d+)(?:\s.*)?$")
INSTRUCTION_RE = re.compile(r"^\s+([0-9a-fA-F]+):\s+[0-9a-fA-F]")
CALL_RE = re.compile(r"\b(?:bl|blx)\s")


def normalize_path(file: str) -> str:
    """Use forward slashes so Windows and Unix paths compare equal."""
    return file.strip().replace("\\", "/")


def make_key(file: str, line: int) -> str:
    return f"{normalize_path(file)}:{line}"


@dataclass
class BreakpointTranslation:
    """Declared breakpoints split into those with and without an address."""
    resolved: List[SourceLineAddress] = field(default_factory=list)
    unresolved: List[BreakpointDeclaration] = field(default_factory=list)


class AddressMapper:
    """Bidirectional source line / function / address index.

    Example:
        mapper = AddressMapper()
        if mapper.load_file("full_disasm.txt"):
            addr = mapper.resolve("main.c", 10)       # "0x132"
            where = mapper.reverse_resolve("0x00000132")
    """

    def __init__(self) -> None:
        self._line_to_address: Dict[str, str] = {}
        self._address_to_line: Dict[str, SourceLineAddress] = {}
        self._function_to_address: Dict[str, str] = {}
        self.disassembly_path: Optional[str] = None

    # === Loading ===

    def load_file(self, path: Union[str, Path]) -> bool:
        """Load and parse a listing file.

        Returns:
            True if the file was read and produced at least one mapping
        """
        try:
            text = Path(path).read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning(f"Disassembly file not readable: {path} ({e})")
            return False
        self.disassembly_path = str(path)
        self.load_text(text)
        logger.info(
            f"Loaded {len(self._line_to_address)} line mappings and "
            f"{len(self._function_to_address)} functions from {path}"
        )
        return self.loaded

    def load_workspace(self, workspace: Union[str, Path]) -> bool:
        """Load ``full_disasm.txt`` from a workspace root."""
        path = find_disassembly(workspace)
        if path is None:
            logger.info(f"{DISASSEMBLY_FILENAME} not found in {workspace}")
            return False
        return self.load_file(path)

    def load_text(self, text: str) -> None:
        """Parse listing text, replacing any previous mappings."""
        self.clear()
        lines = text.splitlines()
        self._index_functions(lines)
        self._index_lines(lines)

    def clear(self) -> None:
        self._line_to_address.clear()
        self._address_to_line.clear()
        self._function_to_address.clear()

    def _index_functions(self, lines: List[str]) -> None:
        for line in lines:
            match = FUNCTION_LABEL_RE.match(line)
            if match:
                name = match.group(2) or match.group(3)
                self._function_to_address.setdefault(name, normalize_address(match.group(1)))

    def _index_lines(self, lines: List[str]) -> None:
        current_function: Optional[str] = None

        for index, line in enumerate(lines):
            label = FUNCTION_LABEL_RE.match(line)
            if label:
                current_function = label.group(2) or label.group(3)
                continue

            comment = SOURCE_COMMENT_RE.match(line)
            if not comment:
                continue

            file = normalize_path(comment.group(1))
            line_number = int(comment.group(2))
            address = self._find_line_address(lines, index)
            if address is None:
                continue

            key = make_key(file, line_number)
            if key not in self._line_to_address:
                self._line_to_address[key] = address
            self._address_to_line.setdefault(
                address,
                SourceLineAddress(file=file, line=line_number, address=address,
                                  function=current_function),
            )

    def _find_line_address(self, lines: List[str], start: int) -> Optional[str]:
        """Address for the source comment at ``lines[start]``.

        Prefers the first call instruction in the window over the first
        instruction of any kind.
        """
        first: Optional[str] = None
        end = min(start + 1 + LOOKAHEAD_LINES, len(lines))

        for line in lines[start + 1:end]:
            if SOURCE_COMMENT_RE.match(line):
                break
            match = INSTRUCTION_RE.match(line)
            if not match:
                continue
            address = normalize_address(match.group(1))
            if first is None:
                first = address
            if CALL_RE.search(line):
                return address

        return first

    # === Lookups ===

    @property
    def loaded(self) -> bool:
        """Check if a listing produced any mappings."""
        return bool(self._line_to_address or self._function_to_address)

    def resolve(self, file: str, line: int) -> Optional[str]:
        """Address of the first instruction for ``file:line``.

        Falls back to a unique path-suffix match so an absolute IDE path
        finds a listing that recorded a relative path (and vice versa).
        """
        key = make_key(file, line)
        address = self._line_to_address.get(key)
        if address is not None:
            return address

        wanted = normalize_path(file)
        suffix = f":{line}"
        candidates = []
        for known_key, known_address in self._line_to_address.items():
            if not known_key.endswith(suffix):
                continue
            known_file = known_key[: -len(suffix)]
            if _same_file(wanted, known_file):
                candidates.append(known_address)
        if len(set(candidates)) == 1:
            return candidates[0]
        return None

    def resolve_function(self, name: str) -> Optional[str]:
        """Entry address of a function."""
        return self._function_to_address.get(name)

    def reverse_resolve(self, address: Union[str, int]) -> Optional[SourceLineAddress]:
        """Source location for an address (any padding or hex case)."""
        try:
            key = normalize_address(address)
        except ValueError:
            return None
        return self._address_to_line.get(key)

    def function_at(self, address: Union[str, int]) -> Optional[str]:
        """Name of the function whose entry is closest below ``address``."""
        try:
            target = int(normalize_address(address), 16)
        except ValueError:
            return None
        best: Optional[Tuple[int, str]] = None
        for name, entry in self._function_to_address.items():
            value = int(entry, 16)
            if value <= target and (best is None or value > best[0]):
                best = (value, name)
        return best[1] if best else None

    def translate(
        self, declarations: Iterable[BreakpointDeclaration]
    ) -> BreakpointTranslation:
        """Translate IDE breakpoint declarations to addresses.

        Declarations without an address are returned in ``unresolved``.
        """
        result = BreakpointTranslation()
        for decl in declarations:
            if decl.function is not None:
                address = self.resolve_function(decl.function)
                if address:
                    result.resolved.append(SourceLineAddress(
                        file=decl.function, line=0, address=address,
                        function=decl.function,
                    ))
                    continue
            else:
                address = self.resolve(decl.file or "", decl.line or 0)
                if address:
                    result.resolved.append(SourceLineAddress(
                        file=normalize_path(decl.file or ""), line=decl.line or 0,
                        address=address,
                    ))
                    continue
            logger.debug(f"No address for breakpoint {decl.location}")
            result.unresolved.append(decl)
        return result

    def line_mappings(self) -> List[SourceLineAddress]:
        """All file:line mappings, in listing order."""
        result = []
        for key, address in self._line_to_address.items():
            file, _, line = key.rpartition(":")
            entry = self._address_to_line.get(address)
            function = entry.function if entry else None
            result.append(SourceLineAddress(file=file, line=int(line), address=address,
                                            function=function))
        return result

    def functions(self) -> Dict[str, str]:
        return dict(self._function_to_address)

    def stats(self) -> Dict[str, object]:
        return {
            "total_mappings": len(self._line_to_address),
            "functions": len(self._function_to_address),
            "disassembly_path": self.disassembly_path,
        }


def _same_file(a: str, b: str) -> bool:
    if a == b:
        return True
    longer, shorter = (a, b) if len(a) > len(b) else (b, a)
    return longer.endswith("/" + shorter.lstrip("/")) and bool(shorter)
