"""Memory access traces and conversion to the Dinero trace format."""

from __future__ import annotations

import re
import sys
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

_RECORD = re.compile(r"\s*(\S)\s*((?:0[xX])?[0-9a-fA-F]+)")
_ADDRESS_LIMIT = 0xFFFFFFFF


class TraceError(Exception):
    """Raised for trace records that cannot be used."""


@dataclass(frozen=True)
class Access:
    """One trace record: a type character ('r' or 'w') and an address."""

    kind: str
    address: int

    def __post_init__(self) -> None:
        if len(self.kind) != 1:
            raise TraceError(f"Access type must be one character, got {self.kind!r}")


def parse_trace(text: str) -> list[Access]:
    """Read "<type> <hex address>" records until the text stops matching."""
    accesses = []
    pos = 0
    while (match := _RECORD.match(text, pos)) is not None:
        address = int(match.group(2), 16)
        if address > _ADDRESS_LIMIT:
            break
        accesses.append(Access(match.group(1), address))
        pos = match.end()
    return accesses


def to_dinero(accesses: Iterable[Access]) -> str:
    """Render accesses as Dinero records of size 1."""
    return "".join(f"{a.kind} {a.address:x} 1\n" for a in accesses)


def main(argv: Sequence[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        return 1
    path = args[0]
    try:
        text = Path(path).read_text(encoding="utf-8", errors="replace")
    except OSError:
        print(f"Invalid file path {path}")
        return 1
    Path(path + ".d4").write_text(to_dinero(parse_trace(text)), encoding="utf-8")
    return 0


if __name__ == "__main__":
    sys.exit(main())