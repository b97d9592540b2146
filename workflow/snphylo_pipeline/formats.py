"""Minimal readers for the FASTA and PHYLIP files passed between tools."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from .errors import InputFileError
from .utils import open_text


PHYLIP_NAME_WIDTH = 10


def first_sequence_length(fasta_path: Path) -> int:
    """Return the residue count of the first FASTA record (0 if there is none)."""
    length = 0
    in_record = False
    with open_text(fasta_path) as handle:
        for raw in handle:
            line = raw.strip()
            if line.startswith(">"):
                if in_record:
                    break
                in_record = True
                continue
            if in_record:
                length += len(line)
    return length


def phylip_sample_names(phylip_path: Path) -> List[str]:
    """Sample names from the first block of an interleaved PHYLIP alignment.

    In the interleaved layout (MUSCLE `-phyi`) only the first ``ntaxa`` rows
    after the header carry names. Wrapped sequential files are not supported.
    """
    with open_text(phylip_path, errors="surrogateescape") as handle:
        header = handle.readline().split()
        if len(header) < 2:
            raise InputFileError(f"{phylip_path} does not start with a PHYLIP header line")
        try:
            ntaxa = int(header[0])
        except ValueError as exc:
            raise InputFileError(f"Invalid taxa count in PHYLIP header of {phylip_path}: {header[0]!r}") from exc

        names: List[str] = []
        for raw in handle:
            if not raw.strip():
                continue
            names.append(raw[:PHYLIP_NAME_WIDTH].strip())
            if len(names) == ntaxa:
                break

    if len(names) != ntaxa:
        raise InputFileError(f"{phylip_path} declares {ntaxa} samples but lists {len(names)}")
    return names


def find_sample_index(phylip_path: Path, sample: str) -> Optional[int]:
    """1-based row of ``sample`` in the alignment, as PHYLIP programs number them."""
    wanted = sample[:PHYLIP_NAME_WIDTH].strip()
    for index, name in enumerate(phylip_sample_names(phylip_path), 1):
        if name == wanted:
            return index
    return None
