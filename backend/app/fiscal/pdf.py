"""
Minimal PDF writer for fiscal documents.

Produces a PDF 1.4 file with one base-14 font (Helvetica, standard encoding) and
plain text lines only. No layout engine: lines are wrapped by character count and paginated
at a fixed leading. Output is fully deterministic for a given input.
"""
from __future__ import annotations

import re
from typing import Iterable

PAGE_WIDTH = 595
PAGE_HEIGHT = 842
FONT_SIZE = 10
LINE_HEIGHT = 14
TOP_Y = 802
BOTTOM_Y = 48
LEFT_X = 40
MAX_LINE_CHARS = 94

LINES_PER_PAGE = max(1, (TOP_Y - BOTTOM_Y) // LINE_HEIGHT)

_NON_PRINTABLE_ASCII = re.compile(r"[^\x20-\x7E]")


def sanitize_ascii(value: str) -> str:
    # The standard Helvetica encoding only covers printable ASCII reliably.
    return _NON_PRINTABLE_ASCII.sub("?", value or "")


def escape_pdf_text(value: str) -> str:
    return sanitize_ascii(value).replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def _hard_split(word: str, max_chars: int) -> list[str]:
    return [word[i:i + max_chars] for i in range(0, len(word), max_chars)]


def wrap_line(line: str, max_chars: int = MAX_LINE_CHARS) -> list[str]:
    """
    Greedy word wrap. Words longer than `max_chars` are split by character count;
    nothing is ever truncated.
    """
    if max_chars < 1:
        raise ValueError("max_chars must be >= 1")
    if len(line) <= max_chars:
        return [line]

    out: list[str] = []
    current = ""
    for word in line.split():
        if len(word) > max_chars:
            if current:
                out.append(current)
            chunks = _hard_split(word, max_chars)
            out.extend(chunks[:-1])
            current = chunks[-1]
            continue
        candidate = f"{current} {word}" if current else word
        if len(candidate) > max_chars:
            out.append(current)
            current = word
        else:
            current = candidate
    if current:
        out.append(current)
    return out or [""]


def paginate(lines: Iterable[str], *, max_chars: int = MAX_LINE_CHARS, lines_per_page: int = LINES_PER_PAGE) -> list[list[str]]:
    flat: list[str] = []
    for line in lines:
        flat.extend(wrap_line(sanitize_ascii(line), max_chars))
    pages = [flat[i:i + lines_per_page] for i in range(0, len(flat), lines_per_page)]
    return pages or [[""]]


def _content_stream(page_lines: list[str]) -> str:
    shown = "\nT*\n".join(f"({escape_pdf_text(line)}) Tj" for line in page_lines) or "() Tj"
    return f"BT\n/F1 {FONT_SIZE} Tf\n{LINE_HEIGHT} TL\n{LEFT_X} {TOP_Y} Td\n{shown}\nET\n"


def build_simple_pdf(lines: Iterable[str], *, max_chars: int = MAX_LINE_CHARS) -> bytes:
    """
    Render text lines into PDF bytes.

    Object layout: 1 Catalog, 2 Pages, 3 Font, then a Page/Contents pair per page
    (4/5, 6/7, ...). The xref table records the exact byte offset of every object.
    """
    pages = paginate(lines, max_chars=max_chars)

    objects: list[str] = [
        "<< /Type /Catalog /Pages 2 0 R >>",
        "",  # Pages, filled in once the kids are known
        "<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    page_ids: list[int] = []
    for idx, page_lines in enumerate(pages):
        page_id = 4 + idx * 2
        content_id = page_id + 1
        page_ids.append(page_id)
        stream = _content_stream(page_lines)
        objects.append(
            f"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 {PAGE_WIDTH} {PAGE_HEIGHT}] "
            f"/Resources << /Font << /F1 3 0 R >> >> /Contents {content_id} 0 R >>"
        )
        objects.append(f"<< /Length {len(stream.encode('ascii'))} >>\nstream\n{stream}endstream")

    kids = " ".join(f"{pid} 0 R" for pid in page_ids)
    objects[1] = f"<< /Type /Pages /Kids [{kids}] /Count {len(page_ids)} >>"

    buf = bytearray(b"%PDF-1.4\n")
    offsets: list[int] = []
    for num, body in enumerate(objects, start=1):
        offsets.append(len(buf))
        buf += f"{num} 0 obj\n{body}\nendobj\n".encode("ascii")

    xref_offset = len(buf)
    size = len(objects) + 1
    # Each xref entry is exactly 20 bytes including the two-char EOL ("\s\n").
    xref = [f"xref\n0 {size}\n", "0000000000 65535 f \n"]
    xref.extend(f"{off:010d} 00000 n \n" for off in offsets)
    buf += "".join(xref).encode("ascii")
    buf += f"trailer\n<< /Size {size} /Root 1 0 R >>\nstartxref\n{xref_offset}\n%%EOF\n".encode("ascii")
    return bytes(buf)
