"""Pipelined RISC-V simulator with branch prediction, cache modelling and trace tools."""

__version__ = "0.1.0"
__all__ = [
    "branch_predictor",
    "cache",
    "cache_cli",
    "cpu_cli",
    "decoder",
    "elf",
    "isa",
    "memory",
    "simulator",
    "trace",
]