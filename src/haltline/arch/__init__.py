"""Target architecture tables."""

from haltline.arch.cortex_m import (
    REGISTER_NAMES,
    describe_register,
    placeholder_registers,
)

__all__ = ["REGISTER_NAMES", "describe_register", "placeholder_registers"]
