"""Drop low-quality genotype records from VCF and HapMap files.

The pipeline runs this module as its own process::

    python -m snphylo_pipeline.filters vcf -i in.vcf -o out.vcf -c 5 -p 5
    python -m snphylo_pipeline.filters hapmap -i in.hmp.txt -o out.hmp.txt -p 5

and treats a non-zero exit status as a failed step, the same as for the
external programs.
"""

from __future__ import annotations

import argparse
import csv
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import IO, List, Sequence, Tuple

import numpy as np
import pandas as pd

from .utils import ensure_parent, get_logger, open_text


logger = get_logger()

VCF_FIXED_COLUMNS = 9
HAPMAP_FIXED_COLUMNS = 11
HAPMAP_MISSING = frozenset({"NN", "N", "--", "-", "00", "0", ""})
CHUNK_SIZE = 10_000
# Bytes that are not UTF-8 (latin-1 meta lines, sample names) are copied through unchanged.
PASS_BYTES = "surrogateescape"


class FilterError(ValueError):
    """Raised when a genotype file cannot be parsed."""


@dataclass(frozen=True)
class FilterResult:
    total: int
    kept: int

    @property
    def removed(self) -> int:
        return self.total - self.kept


def _write_rows(handle: IO[str], frame: pd.DataFrame) -> None:
    for row in frame.itertuples(index=False, name=None):
        handle.write("\t".join(row) + "\n")


def _read_table(path: Path, skiprows: int):
    return pd.read_csv(
        path,
        sep="\t",
        skiprows=skiprows,
        header=0,
        dtype=str,
        keep_default_na=False,
        quoting=csv.QUOTE_NONE,
        chunksize=CHUNK_SIZE,
        compression="infer",
        encoding_errors=PASS_BYTES,
    )


def _read_vcf_header(path: Path) -> Tuple[List[str], str]:
    meta: List[str] = []
    with open_text(path, errors=PASS_BYTES) as handle:
        for raw in handle:
            if raw.startswith("##"):
                meta.append(raw)
            elif raw.startswith("#CHROM"):
                return meta, raw if raw.endswith("\n") else raw + "\n"
            else:
                break
    raise FilterError(f"{path} has no #CHROM header line")


def is_snp(ref: str, alt: str) -> bool:
    if len(ref) != 1 or ref == ".":
        return False
    return all(len(allele) == 1 and allele not in {".", "*"} for allele in alt.split(","))


def count_low_quality(fmt: str, samples: Sequence[str], min_depth: int) -> int:
    """Number of samples with no genotype call or a depth below ``min_depth``.

    Depth is only judged when the record's FORMAT has a DP key.
    """
    keys = fmt.split(":")
    gt_idx = keys.index("GT") if "GT" in keys else None
    dp_idx = keys.index("DP") if "DP" in keys else None

    low = 0
    for value in samples:
        fields = (value or ".").split(":")
        if gt_idx is not None:
            gt = fields[gt_idx] if gt_idx < len(fields) else "."
            if "." in gt:
                low += 1
                continue
        if dp_idx is not None:
            dp = fields[dp_idx] if dp_idx < len(fields) else "."
            try:
                depth = int(dp)
            except ValueError:
                low += 1
                continue
            if depth < min_depth:
                low += 1
    return low


def _vcf_keep_mask(chunk: pd.DataFrame, min_depth: int, max_percent: float) -> np.ndarray:
    n_samples = chunk.shape[1] - VCF_FIXED_COLUMNS
    snp = np.fromiter(
        (is_snp(ref, alt) for ref, alt in zip(chunk.iloc[:, 3], chunk.iloc[:, 4])),
        dtype=bool,
        count=len(chunk),
    )
    samples = chunk.iloc[:, VCF_FIXED_COLUMNS:].to_numpy()
    low = np.fromiter(
        (count_low_quality(fmt, row, min_depth) for fmt, row in zip(chunk.iloc[:, 8], samples)),
        dtype=float,
        count=len(chunk),
    )
    return snp & (low * 100.0 / n_samples <= max_percent)


def _hapmap_keep_mask(chunk: pd.DataFrame, max_percent: float) -> np.ndarray:
    genotypes = chunk.iloc[:, HAPMAP_FIXED_COLUMNS:]
    missing = genotypes.apply(lambda col: col.str.strip().str.upper()).isin(HAPMAP_MISSING)
    return missing.mean(axis=1).to_numpy() * 100.0 <= max_percent


def filter_vcf(input_path: Path, output_path: Path, min_depth: int, max_percent: float) -> FilterResult:
    meta, header = _read_vcf_header(input_path)
    columns = header.rstrip("\n").split("\t")
    n_samples = len(columns) - VCF_FIXED_COLUMNS
    if n_samples <= 0:
        raise FilterError(f"{input_path} has no sample columns")

    total = 0
    kept = 0
    ensure_parent(output_path)
    with output_path.open("w", encoding="utf-8", errors=PASS_BYTES) as out:
        out.writelines(meta)
        out.write(header)
        try:
            with _read_table(input_path, skiprows=len(meta)) as reader:
                for chunk in reader:
                    chunk = chunk.fillna(".")
                    keep = _vcf_keep_mask(chunk, min_depth, max_percent)
                    _write_rows(out, chunk.loc[keep])
                    total += len(chunk)
                    kept += int(keep.sum())
        except pd.errors.ParserError as exc:
            raise FilterError(f"Failed to parse {input_path}: {exc}") from exc

    logger.info(
        "VCF records: kept %d of %d (min depth = %d, max low-quality samples = %.2f%%)",
        kept,
        total,
        min_depth,
        max_percent,
    )
    return FilterResult(total=total, kept=kept)


def filter_hapmap(input_path: Path, output_path: Path, max_percent: float) -> FilterResult:
    with open_text(input_path, errors=PASS_BYTES) as handle:
        header = handle.readline()
    if not header.endswith("\n"):
        header += "\n"
    n_columns = len(header.rstrip("\n").split("\t"))
    if n_columns <= HAPMAP_FIXED_COLUMNS:
        raise FilterError(f"{input_path} has no sample columns")

    total = 0
    kept = 0
    ensure_parent(output_path)
    with output_path.open("w", encoding="utf-8", errors=PASS_BYTES) as out:
        out.write(header)
        try:
            with _read_table(input_path, skiprows=0) as reader:
                for chunk in reader:
                    chunk = chunk.fillna("")
                    keep = _hapmap_keep_mask(chunk, max_percent)
                    _write_rows(out, chunk.loc[keep])
                    total += len(chunk)
                    kept += int(keep.sum())
        except pd.errors.ParserError as exc:
            raise FilterError(f"Failed to parse {input_path}: {exc}") from exc

    logger.info(
        "HapMap records: kept %d of %d (max missing samples = %.2f%%)",
        kept,
        total,
        max_percent,
    )
    return FilterResult(total=total, kept=kept)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Remove low-quality SNP records")
    sub = parser.add_subparsers(dest="mode", required=True)

    vcf = sub.add_parser("vcf", help="Filter a VCF file by depth and missing genotypes")
    vcf.add_argument("-i", "--input", required=True, type=Path)
    vcf.add_argument("-o", "--output", required=True, type=Path)
    vcf.add_argument("-c", "--min-depth", type=int, default=5)
    vcf.add_argument("-p", "--max-percent", type=float, default=5.0)

    hapmap = sub.add_parser("hapmap", help="Filter a HapMap file by missing genotypes")
    hapmap.add_argument("-i", "--input", required=True, type=Path)
    hapmap.add_argument("-o", "--output", required=True, type=Path)
    hapmap.add_argument("-p", "--max-percent", type=float, default=5.0)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        if args.mode == "vcf":
            filter_vcf(args.input, args.output, args.min_depth, args.max_percent)
        else:
            filter_hapmap(args.input, args.output, args.max_percent)
    except (FilterError, OSError) as exc:
        logger.error(str(exc))
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
