from __future__ import annotations

import shutil
import zlib
from pathlib import Path
from typing import Callable, Dict

from .config import RunContext
from .errors import InputFileError, OutgroupNotFoundError, SequenceLengthError, ToolError
from .formats import find_sample_index, first_sequence_length
from .tools import package_env, resolve_executable, resolve_python, resolve_script, run_tool
from .utils import count_lines, get_logger, open_binary, remove_if_exists, step_logger


logger = get_logger()

INPUT_LABELS = {"vcf": "VCF", "hapmap": "HapMap", "gds": "GDS"}
GENERATOR_FLAGS = {"vcf": "-v", "hapmap": "-H", "gds": "-d"}
FILTERED_SUFFIXES = {"vcf": ".filtered.vcf", "hapmap": ".filtered.hapmap.txt"}

# Raised by gzip for unreadable, truncated or corrupt input.
READ_ERRORS = (OSError, EOFError, zlib.error)

# dnaml reads and writes fixed file names in its working directory.
DNAML_INFILE = "infile"
DNAML_OUTFILE = "outfile"
DNAML_OUTTREE = "outtree"


def check_file(path: Path, label: str) -> None:
    if not path.is_file():
        raise InputFileError(f"{label} not found: {path}")
    try:
        size = path.stat().st_size
    except OSError as exc:
        raise InputFileError(f"Cannot read {label} {path}: {exc}") from exc
    if size == 0:
        raise InputFileError(f"{label} is empty: {path}")


def read_line_count(path: Path, label: str) -> int:
    try:
        return count_lines(path)
    except READ_ERRORS as exc:
        raise InputFileError(f"Cannot read {label} {path}: {exc}") from exc


def check_min_lines(path: Path, label: str, min_lines: int) -> int:
    check_file(path, label)
    total = read_line_count(path, label)
    if total < min_lines:
        raise InputFileError(
            f"{label} {path} has only {total} lines; at least {min_lines} are required"
        )
    return total


def count_records(path: Path, input_format: str) -> int:
    """Data rows in a VCF or HapMap file, header lines excluded."""
    records = 0
    try:
        with open_binary(path) as handle:
            for line_no, line in enumerate(handle):
                if not line.strip():
                    continue
                if input_format == "vcf" and line.startswith(b"#"):
                    continue
                if input_format == "hapmap" and line_no == 0:
                    continue
                records += 1
    except READ_ERRORS as exc:
        raise InputFileError(f"Cannot read {path}: {exc}") from exc
    return records


def _genotype_source(context: RunContext) -> Path:
    return context.artifacts.get("genotypes") or context.artifacts.get("input") or context.settings.input_path


def validate_input(context: RunContext) -> None:
    settings = context.settings
    label = f"{INPUT_LABELS[settings.input_format]} file"
    path = Path(settings.input_path).expanduser().resolve()

    with step_logger("Validate input genotype file"):
        if settings.input_format == "gds":
            check_file(path, label)
            logger.info("%s %s (%d bytes)", label, path, path.stat().st_size)
        else:
            total = check_min_lines(path, label, context.config.limit("min_input_lines"))
            logger.info("%s %s (%d lines)", label, path, total)
        context.artifacts["input"] = path


def filter_genotypes(context: RunContext) -> None:
    settings = context.settings
    input_format = settings.input_format
    if input_format not in FILTERED_SUFFIXES:
        logger.info("No low-quality filter for %s input", INPUT_LABELS[input_format])
        return

    source = _genotype_source(context)
    output = settings.artifact(FILTERED_SUFFIXES[input_format])
    cmd = [resolve_python(context.config), "-m", "snphylo_pipeline.filters", input_format, "-i", source, "-o", output]
    if input_format == "vcf":
        cmd += ["-c", settings.min_depth]
    cmd += ["-p", settings.max_low_percent]

    with step_logger(f"Remove low-quality {INPUT_LABELS[input_format]} records"):
        before = read_line_count(source, "Genotype file")
        remove_if_exists(output)
        run_tool(cmd, label="Genotype filter", env=package_env())
        check_file(output, "Filtered genotype file")

        after = read_line_count(output, "Filtered genotype file")
        logger.info("Removed %d low-quality records (%d -> %d lines)", before - after, before, after)

        records = count_records(output, input_format)
        min_records = context.config.limit("min_filtered_records")
        if records < min_records:
            raise InputFileError(
                f"Only {records} SNP records remain after filtering {source} "
                f"(at least {min_records} are required). "
                f"Try a lower minimum depth (-c) or a higher percent of low-quality samples (-p)."
            )
        context.artifacts["genotypes"] = output


def generate_sequences(context: RunContext) -> None:
    settings = context.settings
    rscript = resolve_executable(context.config, "rscript")
    script = resolve_script(context.config, "sequence_generator")
    genotypes = _genotype_source(context)
    fasta = settings.artifact(".fasta")

    cmd = [
        rscript,
        script,
        GENERATOR_FLAGS[settings.input_format],
        genotypes,
        "-l", settings.ld_threshold,
        "-m", settings.maf_threshold,
        "-M", settings.missing_rate,
        "-a", settings.num_chromosomes,
        "-o", settings.output_prefix,
    ]

    with step_logger("Generate SNP sequences"):
        remove_if_exists(fasta)
        run_tool(cmd, label="Sequence generator", cwd=settings.output_dir)
        if not fasta.is_file():
            raise ToolError(f"Sequence generator finished but did not write {fasta}", cmd=[str(c) for c in cmd])
        context.artifacts["sequences"] = fasta
        logger.info("SNP sequences saved to %s", fasta)


def check_sequence_length(context: RunContext) -> None:
    fasta = context.artifacts.get("sequences") or context.settings.artifact(".fasta")
    minimum = context.config.limit("min_sequence_length")
    maximum = context.config.limit("max_sequence_length")

    with step_logger("Check SNP sequence length"):
        length = first_sequence_length(fasta)
        if length < minimum:
            raise SequenceLengthError(
                f"The generated SNP sequence is too short ({length} < {minimum}). "
                f"Try raising the LD (-l) or missing rate (-M) thresholds, or lowering the MAF threshold (-m).",
                length=length,
            )
        if length > maximum:
            raise SequenceLengthError(
                f"The generated SNP sequence is too long ({length} > {maximum}). "
                f"Try lowering the LD threshold (-l).",
                length=length,
            )
        logger.info("SNP sequence length: %d", length)


def align_sequences(context: RunContext) -> None:
    settings = context.settings
    muscle = resolve_executable(context.config, "muscle")
    fasta = context.artifacts.get("sequences") or settings.artifact(".fasta")
    phylip = settings.artifact(".phylip.txt")

    with step_logger("Align SNP sequences with MUSCLE"):
        remove_if_exists(phylip)
        run_tool(
            [muscle, "-phyi", "-in", fasta, "-out", phylip, "-maxiters", settings.muscle_max_iters],
            label="MUSCLE",
            cwd=settings.output_dir,
        )
        check_file(phylip, "Alignment file")
        context.artifacts["alignment"] = phylip
        logger.info("Alignment saved to %s", phylip)


def build_ml_tree(context: RunContext) -> None:
    settings = context.settings
    phylip = context.artifacts.get("alignment") or settings.artifact(".phylip.txt")
    workdir = settings.output_dir

    with step_logger("Build maximum-likelihood tree with dnaml"):
        check_file(phylip, "Alignment file")
        answers = "Y\n"
        if settings.outgroup:
            index = find_sample_index(phylip, settings.outgroup)
            if index is None:
                raise OutgroupNotFoundError(
                    f"Outgroup sample {settings.outgroup!r} was not found in {phylip}"
                )
            logger.info("Rooting tree on outgroup %s (sample #%d)", settings.outgroup, index)
            answers = f"O\n{index}\nY\n"

        dnaml = resolve_executable(context.config, "dnaml")
        for name in (DNAML_INFILE, DNAML_OUTFILE, DNAML_OUTTREE):
            remove_if_exists(workdir / name)
        shutil.copyfile(phylip, workdir / DNAML_INFILE)
        run_tool([dnaml], label="dnaml", cwd=workdir, stdin_text=answers)


def collect_tree_outputs(context: RunContext) -> None:
    settings = context.settings
    workdir = settings.output_dir
    renames = (
        (DNAML_OUTFILE, ".ml.txt", "ml_report"),
        (DNAML_OUTTREE, ".ml.tree", "ml_tree"),
    )

    with step_logger("Collect tree outputs"):
        for source_name, suffix, key in renames:
            source = workdir / source_name
            if not source.is_file():
                raise ToolError(f"dnaml did not produce {source}")
            target = settings.artifact(suffix)
            remove_if_exists(target)
            source.replace(target)
            context.artifacts[key] = target
            logger.info("Saved %s", target)
        remove_if_exists(workdir / DNAML_INFILE)


def bootstrap_tree(context: RunContext) -> None:
    settings = context.settings
    rscript = resolve_executable(context.config, "rscript")
    script = resolve_script(context.config, "bootstrap_tree")
    phylip = context.artifacts.get("alignment") or settings.artifact(".phylip.txt")

    cmd = [rscript, script, "-i", phylip, "-b", settings.bootstrap_replicates, "-p", settings.output_prefix]
    if settings.outgroup:
        cmd += ["-o", settings.outgroup]

    with step_logger(f"Bootstrap analysis ({settings.bootstrap_replicates} replicates)"):
        run_tool(cmd, label="Bootstrap analysis", cwd=settings.output_dir)
        tree = settings.artifact(".bs.tree")
        if not tree.is_file():
            raise ToolError(f"Bootstrap analysis finished but did not write {tree}", cmd=[str(c) for c in cmd])
        context.artifacts["bs_tree"] = tree
        plot = settings.artifact(".bs.png")
        if plot.is_file():
            context.artifacts["bs_plot"] = plot
        else:
            logger.warning("Bootstrap tree plot %s was not produced", plot)


StepFunction = Callable[[RunContext], None]

STEP_FUNCTIONS: Dict[str, StepFunction] = {
    "step01_validate_input": validate_input,
    "step02_filter_genotypes": filter_genotypes,
    "step03_generate_sequences": generate_sequences,
    "step04_check_sequence_length": check_sequence_length,
    "step05_align_sequences": align_sequences,
    "step06_build_ml_tree": build_ml_tree,
    "step07_collect_tree_outputs": collect_tree_outputs,
    "step08_bootstrap_tree": bootstrap_tree,
}
