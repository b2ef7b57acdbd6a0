from __future__ import annotations

import re
from typing import Sequence

from ..models import ScrapedRow


# Unit/annotation symbols the portfolio table appends to numbers.
_SYMBOLS_RE = re.compile(r"[円%倍\r\n]")
# "+" is only kept as a leading sign ("+2%" -> "+2").
_INNER_PLUS_RE = re.compile(r"(?<=.)\+")


def normalize_cell(text: str) -> str:
    """
    "1,234円\\n(+1.2%)" -> "1,234"

    Drops everything after the first line break (the site renders day-over-day deltas on a
    second line), then strips unit symbols. Idempotent.
    """
    s = (text or "").strip()
    s = s.split("\n", 1)[0]
    s = _SYMBOLS_RE.sub("", s)
    s = _INNER_PLUS_RE.sub("", s)
    return s.strip()


def unique_headers(head: Sequence[str]) -> list[str]:
    """
    Keep duplicated headers positionally: ["A", "A", "B"] -> ["A", "A_2", "B"].
    """
    seen: dict[str, int] = {}
    taken: set[str] = set()
    out: list[str] = []
    for h in head:
        n = seen.get(h, 0) + 1
        key = h if n == 1 else f"{h}_{n}"
        while key in taken:
            n += 1
            key = f"{h}_{n}"
        seen[h] = n
        taken.add(key)
        out.append(key)
    return out


def rows_to_records(cells: Sequence[Sequence[str]]) -> list[ScrapedRow]:
    """
    Zip every data row with the first (header) row by position.

    Missing trailing cells become "", cells beyond the header width are ignored.
    """
    if not cells:
        return []
    head, *body = [[normalize_cell(c) for c in row] for row in cells]
    keys = unique_headers(head)
    records: list[ScrapedRow] = []
    for row in body:
        records.append({k: (row[i] if i < len(row) else "") for i, k in enumerate(keys)})
    return records
