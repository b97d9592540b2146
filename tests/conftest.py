from __future__ import annotations

import stat
import sys
from pathlib import Path

import pytest
import yaml


VCF_TEXT = (
    "##fileformat=VCFv4.2\n"
    "##FORMAT=<ID=GT,Number=1,Type=String,Description=\"Genotype\">\n"
    "#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO\tFORMAT\tS1\tS2\tS3\tS4\n"
    "chr1\t100\t.\tA\tG\t50\tPASS\t.\tGT:DP\t0/0:10\t0/1:12\t1/1:8\t0/0:9\n"
    "chr1\t200\t.\tC\tT\t50\tPASS\t.\tGT:DP\t0/0:10\t./.:0\t1/1:8\t0/0:9\n"
    "chr1\t300\t.\tG\tA\t50\tPASS\t.\tGT:DP\t0/0:10\t0/1:2\t1/1:8\t0/0:9\n"
    "chr1\t400\t.\tAT\tA\t50\tPASS\t.\tGT:DP\t0/0:10\t0/1:12\t1/1:8\t0/0:9\n"
    "chr2\t100\t.\tT\tC\t50\tPASS\t.\tGT:DP\t0/1:10\t0/1:12\t1/1:8\t0/0:9\n"
    "chr2\t200\t.\tG\tC\t50\tPASS\t.\tGT:DP\t1/1:10\t0/0:12\t0/1:8\t0/0:9\n"
)

HAPMAP_HEADER = "rs#\talleles\tchrom\tpos\tstrand\tassembly#\tcenter\tprotLSID\tassayLSID\tpanelLSID\tQCcode\tS1\tS2\tS3\tS4\n"
HAPMAP_TEXT = HAPMAP_HEADER + (
    "rs1\tA/G\t1\t100\t+\tNA\tNA\tNA\tNA\tNA\tNA\tAA\tAG\tGG\tAA\n"
    "rs2\tC/T\t1\t200\t+\tNA\tNA\tNA\tNA\tNA\tNA\tCC\tNN\tTT\tCC\n"
    "rs3\tG/A\t1\t300\t+\tNA\tNA\tNA\tNA\tNA\tNA\tGG\tGA\tAA\tGG\n"
    "rs4\tT/C\t2\t100\t+\tNA\tNA\tNA\tNA\tNA\tNA\tTT\tTC\tCC\tTT\n"
)

FAKE_RSCRIPT = '''
import os
import sys
from pathlib import Path

script = Path(sys.argv[1]).name
opts = sys.argv[2:]


def opt(flag):
    return opts[opts.index(flag) + 1]


if script == "generate_snp_sequence.R":
    prefix = opt("-o")
    length = int(os.environ.get("FAKE_SEQ_LENGTH", "600"))
    samples = os.environ.get("FAKE_SAMPLES", "S1,S2,S3,S4").split(",")
    seq = ("ACGT" * (length // 4 + 1))[:length]
    with open(prefix + ".fasta", "w") as handle:
        for sample in samples:
            handle.write(">" + sample + "\\n")
            for start in range(0, length, 60):
                handle.write(seq[start:start + 60] + "\\n")
    Path(prefix + ".generator_args").write_text(" ".join(opts))
elif script == "determine_bs_tree.R":
    prefix = opt("-p")
    Path(prefix + ".bs.tree").write_text("((S1,S2)100,(S3,S4)100);\\n")
    Path(prefix + ".bs.png").write_bytes(b"PNG")
    Path(prefix + ".bootstrap_args").write_text(" ".join(opts))

sys.exit(int(os.environ.get("FAKE_RSCRIPT_EXIT", "0")))
'''

FAKE_MUSCLE = '''
import os
import sys

args = sys.argv[1:]
source = args[args.index("-in") + 1]
target = args[args.index("-out") + 1]

records = []
with open(source) as handle:
    for line in handle:
        line = line.strip()
        if line.startswith(">"):
            records.append([line[1:], ""])
        elif line:
            records[-1][1] += line

with open(target, "w") as handle:
    handle.write(" %d %d\\n" % (len(records), len(records[0][1])))
    for name, seq in records:
        handle.write(name[:10].ljust(10) + seq + "\\n")

sys.exit(int(os.environ.get("FAKE_MUSCLE_EXIT", "0")))
'''

FAKE_DNAML = '''
import os
import sys

if not os.path.exists("infile"):
    sys.exit(2)
answers = sys.stdin.read()
with open("outfile", "w") as handle:
    handle.write("dnaml answers:\\n" + answers)
with open("outtree", "w") as handle:
    handle.write("(S1,(S2,(S3,S4)));\\n")
sys.exit(int(os.environ.get("FAKE_DNAML_EXIT", "0")))
'''


def write_stub(path: Path, body: str) -> Path:
    path.write_text(f"#!{sys.executable}\n{body}", encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def tool_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "tools"
    directory.mkdir()
    write_stub(directory / "Rscript", FAKE_RSCRIPT)
    write_stub(directory / "muscle", FAKE_MUSCLE)
    write_stub(directory / "dnaml", FAKE_DNAML)
    scripts = directory / "scripts"
    scripts.mkdir()
    (scripts / "generate_snp_sequence.R").write_text("# sequence generator placeholder\n")
    (scripts / "determine_bs_tree.R").write_text("# bootstrap placeholder\n")
    return directory


@pytest.fixture
def config_path(tmp_path: Path, tool_dir: Path) -> Path:
    data = {
        "tools": {
            "rscript_executable": str(tool_dir / "Rscript"),
            "muscle_executable": str(tool_dir / "muscle"),
            "dnaml_executable": str(tool_dir / "dnaml"),
        },
        "scripts": {
            "sequence_generator": str(tool_dir / "scripts" / "generate_snp_sequence.R"),
            "bootstrap_tree": str(tool_dir / "scripts" / "determine_bs_tree.R"),
        },
        "limits": {
            "min_input_lines": 5,
            "min_filtered_records": 2,
        },
    }
    path = tmp_path / "snphylo.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


@pytest.fixture
def vcf_file(tmp_path: Path) -> Path:
    path = tmp_path / "input" / "genotypes.vcf"
    path.parent.mkdir(exist_ok=True)
    path.write_text(VCF_TEXT, encoding="utf-8")
    return path


@pytest.fixture
def hapmap_file(tmp_path: Path) -> Path:
    path = tmp_path / "input" / "genotypes.hapmap.txt"
    path.parent.mkdir(exist_ok=True)
    path.write_text(HAPMAP_TEXT, encoding="utf-8")
    return path


@pytest.fixture
def gds_file(tmp_path: Path) -> Path:
    path = tmp_path / "input" / "genotypes.gds"
    path.parent.mkdir(exist_ok=True)
    path.write_bytes(b"COREARRAYx0A\x00\x01\x02")
    return path


@pytest.fixture
def out_prefix(tmp_path: Path) -> Path:
    return (tmp_path / "results" / "rice").resolve()
