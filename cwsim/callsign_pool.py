from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence


@dataclass(frozen=True)
class PoolEntry:
    callsign: str
    name: str = ""
    state: str = ""
    cwops_number: Optional[int] = None


def parse_callsign_lines(lines: Sequence[str]) -> List[PoolEntry]:
    """CSV-ish lines: CALL[,NAME[,STATE[,CWOPS]]]; '#' starts a comment."""
    entries: List[PoolEntry] = []
    seen = set()
    for raw in lines:
        line = raw.strip().lstrip("\ufeff")
        if not line or line.startswith("#"):
            continue
        fields = [f.strip() for f in line.split(",")]
        call = fields[0].upper()
        if not call or call.startswith("#"):
            continue
        if call in seen:
            continue
        seen.add(call)
        name = fields[1].upper() if len(fields) > 1 else ""
        state = fields[2].upper() if len(fields) > 2 else ""
        number = fields[3] if len(fields) > 3 else ""
        entries.append(
            PoolEntry(
                callsign=call,
                name=name,
                state=state,
                cwops_number=int(number) if number.isdigit() else None,
            )
        )
    return entries


def parse_callsign_text(text: str) -> List[PoolEntry]:
    return parse_callsign_lines(text.splitlines())


def load_callsigns_file(path: str | Path) -> List[PoolEntry]:
    p = Path(path)
    data = p.read_text(encoding="utf-8", errors="ignore")
    return parse_callsign_text(data)
