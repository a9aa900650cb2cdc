"""ARM Cortex-M register set.

Names and descriptions for the core registers the probe reports on
Cortex-M0/M0+ class targets.
"""

from typing import Dict, List

from haltline.core.types import RegisterInfo

REGISTER_NAMES: List[str] = [
    "R0", "R1", "R2", "R3", "R4", "R5", "R6", "R7",
    "R8", "R9", "R10", "R11", "R12", "SP", "LR", "PC", "XPSR",
]

REGISTER_DESCRIPTIONS: Dict[str, str] = {
    **{f"R{n}": f"General Purpose Register {n}" for n in range(13)},
    "SP": "Stack Pointer (R13)",
    "R13": "Stack Pointer",
    "LR": "Link Register (R14)",
    "R14": "Link Register",
    "PC": "Program Counter (R15)",
    "R15": "Program Counter",
    "XPSR": "Program Status Register",
    "PSR": "Program Status Register",
    "MSP": "Main Stack Pointer",
    "PSP": "Process Stack Pointer",
    "PRIMASK": "Priority Mask Register",
    "CONTROL": "Control Register",
}

PC_NAMES = ("PC", "R15")


def describe_register(name: str) -> str:
    """Human-readable description of a register name."""
    return REGISTER_DESCRIPTIONS.get(name.upper(), "Unknown Register")


def placeholder_registers() -> List[RegisterInfo]:
    """Zeroed register set shown when no target is attached."""
    return [
        RegisterInfo(name=name, value="0x00000000", description=describe_register(name))
        for name in REGISTER_NAMES
    ]
