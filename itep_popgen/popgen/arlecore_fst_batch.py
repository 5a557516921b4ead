# ITEP_PopGen
# Copyright (C) 2023-2026  The ITEP_PopGen developers
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as
# published by the Free Software Foundation, either version 3 of the
# License, or (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
Pairwise Fst between populations for each alignment, via mothur + arlecore.

Population structure comes from a mothur count file (sequence x sample counts).
Sequences from the same taxon are numbered (taxon__1, taxon__2, ...) so every
gene copy is kept; the count file rows are copied to match.

Per alignment:
  1. skip it unless >= POPS samples contain >= TAXA distinct taxa (--min)
  2. mothur unique.seqs
  3. write an Arlequin project (tmp.arp) and run arlecore with the .ars settings
  4. read the pairwise Fst and Fst p-value matrices from tmp.res/tmp.htm

Output columns (STDOUT): file pop1__pop2 Fst Fst_pvalue_low Fst_pvalue_high
"""

import argparse
import functools
import logging
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, IO, List, Tuple

import pandas as pd

from ..utils.utility import (CommandError, check_file_io, format_value, population_pair,
                             read_fasta, replace_extension, require_executables, run_batch,
                             run_command, run_mothur, setup_logging, working_directory,
                             write_table)

logger = logging.getLogger(__name__)

COLUMNS = ["file", "pop1__pop2", "Fst", "Fst_pvalue_low", "Fst_pvalue_high"]
COPY_SUFFIX_RE = re.compile(r"__\d+$")


@dataclass(frozen=True)
class FstConfig:
    count_file: str
    ars_file: str
    min_pops: int = 2
    min_taxa: int = 3
    delimiter: str = " "
    keep: bool = False
    mothur_binary: str = "mothur"
    arlecore_binary: str = "arlecore"


def default_ars() -> str:
    """Packaged arlecore settings (pairwise Fst with 100 permutations)."""
    return str(Path(__file__).parent / "Fst.ars")


# =============================================================================
# Input preparation
# =============================================================================

def copy_rename_fasta(infile, outdir: Path, delimiter: str) -> Tuple[Path, Dict[str, List[str]]]:
    """Copy the fasta with sequences renamed to 'taxon__N'; returns taxon -> copy names."""
    outfile = outdir / Path(infile).name
    taxon_index = {}
    with open(infile) as fh, open(outfile, "w") as out:
        for line in fh:
            m = re.match(r"^\s*>(.+)", line)
            if not m:
                out.write(line)
                continue
            taxon = re.split(re.escape(delimiter), m.group(1).strip())[0] if delimiter else m.group(1).strip()
            copies = taxon_index.setdefault(taxon, [])
            copies.append(f"{taxon}__{len(copies) + 1}")
            out.write(f">{copies[-1]}\n")
    return outfile, taxon_index


def copy_edit_count(count_file, taxon_index: Dict[str, List[str]], outdir: Path) -> Path:
    """Count file restricted to taxa in the alignment, one row per gene copy."""
    outfile = outdir / Path(count_file).name
    with open(count_file) as fh, open(outfile, "w") as out:
        for lineno, line in enumerate(fh):
            if lineno == 0:
                out.write(line)
                continue
            fields = line.rstrip("\r\n").split("\t")
            for copy in taxon_index.get(fields[0], []):
                out.write("\t".join([copy] + fields[1:]) + "\n")
    return outfile


def load_count(path) -> Dict[str, Dict[str, int]]:
    """Mothur count table -> {sample: {sequence: count}} (columns 3+ are samples)."""
    df = pd.read_csv(path, sep="\t", comment="#", dtype=str)
    if df.shape[1] < 3:
        raise ValueError(f"The count file '{path}' should have >= 3 columns")
    df = df.set_index(df.columns[0])
    return {sample: {seq: int(n) for seq, n in df[sample].items()} for sample in df.columns[1:]}


def taxa_per_sample(counts: Dict[str, Dict[str, int]]) -> Dict[str, int]:
    """Number of distinct taxa (gene copies collapsed) present in each sample."""
    return {sample: len({COPY_SUFFIX_RE.sub("", seq) for seq, n in seqs.items() if n > 0})
            for sample, seqs in counts.items()}


def passes_min(counts: Dict[str, Dict[str, int]], min_pops: int, min_taxa: int) -> bool:
    n_samples = sum(1 for n in taxa_per_sample(counts).values() if n >= min_taxa)
    return n_samples >= min_pops


def mothur_unique_seqs(fasta: Path, count: Path, config: FstConfig) -> Tuple[Path, Path]:
    run_mothur(f"unique.seqs(fasta={fasta.name}, count={count.name})", cwd=fasta.parent,
               binary=config.mothur_binary)
    uniq_fasta = fasta.parent / re.sub(r"(\.[^.]+$|$)", r".unique\1", fasta.name, count=1)
    uniq_count = Path(replace_extension(fasta, ".count_table"))
    for path in (uniq_fasta, uniq_count):
        if not path.is_file():
            raise CommandError(f"mothur unique.seqs did not write {path.name}")
    return uniq_fasta, uniq_count


def load_aligned(path) -> Dict[str, str]:
    seqs = {name: seq.replace(".", "-") for name, seq in read_fasta(path).items()}
    if len({len(s) for s in seqs.values()}) > 1:
        raise ValueError(f"Sequences in {path} are different lengths. Is it aligned?")
    return seqs


# =============================================================================
# Arlequin project
# =============================================================================

def write_arp(fh: IO, seqs: Dict[str, str], counts: Dict[str, Dict[str, int]], title: str = "Fst_batch") -> int:
    """Write the haplotype-list project; returns the number of samples written."""
    samples = [(s, sum(c.values())) for s, c in counts.items() if sum(c.values()) > 0]

    fh.write("[Profile]\n\n")
    fh.write(f'Title="{title}"\n')
    fh.write(f"NbSamples={len(samples)}\n")
    fh.write("GenotypicData=0\nLocusSeparator=NONE\nDataType=DNA\n[DATA]\n[[Samples]]\n")

    for sample, total in samples:
        fh.write(f'SampleName="{sample}"\n')
        fh.write(f"SampleSize={total}\n")
        fh.write("SampleData= {\n")
        for seq_name, n in counts[sample].items():
            if n == 0:  # not found in sample
                continue
            if seq_name not in seqs:
                raise ValueError(f"{seq_name} found in count file, but not in fasta!")
            fh.write(f"{seq_name} {n} {seqs[seq_name]}\n")
        fh.write("}\n")

    fh.write("[[Structure]]\n")
    fh.write('StructureName="Designated_populations"\n')
    fh.write(f"NBGroups={len(samples)}\n")
    for sample, _ in samples:
        fh.write(f'Group={{\n"{sample}"\n}}\n')
    return len(samples)


# =============================================================================
# arlecore results
# =============================================================================

def _section_lines(lines, start: int):
    """Lines after 'start' up to a line starting with '-'; blank and unindented lines skipped."""
    for line in lines[start:]:
        if re.match(r"^-+", line):
            break
        if not line.strip() or re.match(r"^\S", line):
            continue
        yield line


def parse_pop_names(lines: List[str], start: int) -> Dict[str, str]:
    names = {}
    for line in _section_lines(lines, start):
        fields = [f for f in re.split(r"[\s:]+", line) if f]
        if len(fields) >= 2:
            names[fields[0]] = fields[1]
    return names


def parse_matrix(lines: List[str], start: int) -> Dict[str, List[str]]:
    """Lower-triangle matrix keyed by row label; the first row holds the column labels."""
    mtx = {}
    for line in _section_lines(lines, start):
        fields = line.split()
        if "header" not in mtx:
            mtx["header"] = fields
        else:
            mtx[fields[0]] = fields[1:]
    return mtx


def parse_arlecore_htm(text: str, source: str = "") -> Tuple[Dict, Dict, Dict[str, str]]:
    """(Fst matrix, Fst p-value matrix, label -> population name)"""
    lines = text.splitlines()
    fst = fstp = None
    names = {}
    for i, line in enumerate(lines):
        if "unable to read sample data" in line:
            logger.warning('arlecore could not read sample data for "%s"', source)
        if re.search(r"Label\s+Population name", line):
            names = parse_pop_names(lines, i + 2)
        elif "Population pairwise FSTs" in line:
            fst = parse_matrix(lines, i + 2)
        elif "FST P values" in line:
            fstp = parse_matrix(lines, i + 2)
    return fst or {}, fstp or {}, names


def fst_rows(infile: str, fst: Dict, fstp: Dict, names: Dict[str, str]) -> List[List[str]]:
    rows = {}
    for num in sorted(names, key=int):
        for i, value in enumerate(fst.get(num, [])):
            if int(num) == i + 1:
                continue
            pair = population_pair(names[str(i + 1)], names[num])
            try:
                p, sd = (float(x) for x in fstp[num][i].split("+-", 1))
            except (KeyError, IndexError, ValueError):
                raise ValueError(f"{infile}: no Fst p-value for {pair}") from None
            rows[pair] = [infile, pair, value, format_value(p - sd), format_value(p + sd)]
    return [rows[k] for k in sorted(rows)]


def fst_file(infile: str, config: FstConfig) -> List[List[str]]:
    keep_as = replace_extension(infile, "_arlecore") if config.keep else None
    with working_directory(keep_as=keep_as, prefix="arlecore_") as tmp:
        fasta, taxon_index = copy_rename_fasta(infile, tmp, config.delimiter)
        count = copy_edit_count(config.count_file, taxon_index, tmp)
        if not passes_min(load_count(count), config.min_pops, config.min_taxa):
            logger.warning("%s\tDid not pass --min. Skipping.", infile)
            return []

        uniq_fasta, uniq_count = mothur_unique_seqs(fasta, count, config)
        counts = load_count(uniq_count)
        seqs = load_aligned(uniq_fasta)

        arp = tmp / "tmp.arp"
        with open(arp, "w") as fh:
            write_arp(fh, seqs, counts)

        run_command([config.arlecore_binary, arp.name, Path(config.ars_file).resolve()], cwd=tmp)
        htm = tmp / "tmp.res" / "tmp.htm"
        if not htm.is_file():
            raise CommandError(f"arlecore did not produce {htm.relative_to(tmp)} for {infile}")
        fst, fstp, names = parse_arlecore_htm(htm.read_text(errors="replace"), infile)

    rows = fst_rows(infile, fst, fstp, names)
    if not rows:
        raise ValueError(f"No output created for file: '{infile}'")
    return rows


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Pairwise population Fst for each alignment using mothur and arlecore.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("inputs", nargs="+", help="Alignment fasta file(s)")
    parser.add_argument("-c", "--count", required=True, help="Mothur count file defining populations")
    parser.add_argument("-a", "--ars", help="arlecore settings file [packaged Fst.ars]")
    parser.add_argument("-m", "--min", type=int, nargs=2, default=[2, 3], metavar=("POPS", "TAXA"),
                        help="Min number of populations with min number of taxa [2 3]")
    parser.add_argument("-d", "--delimiter", default=" ",
                        help="Taxon name is the part of a sequence name before this delimiter ['%(default)s']")
    parser.add_argument("-k", "--keep", action="store_true", help="Keep the per-alignment working directories")
    parser.add_argument("-f", "--fork", type=int, default=1, help="Number of alignments processed in parallel (0 = auto) [%(default)s]")
    parser.add_argument("--mothur-binary", default="mothur", help="mothur executable [%(default)s]")
    parser.add_argument("--arlecore-binary", default="arlecore", help="arlecore executable [%(default)s]")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress to STDERR")
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        require_executables([args.mothur_binary, args.arlecore_binary])
        count_file = str(check_file_io(args.count, "count file").resolve())
        ars = str(check_file_io(args.ars or default_ars(), "ars file").resolve())
        inputs = [str(check_file_io(f, "alignment").resolve()) for f in args.inputs]

        config = FstConfig(count_file, ars, args.min[0], args.min[1], args.delimiter, args.keep,
                           args.mothur_binary, args.arlecore_binary)
        results = run_batch(functools.partial(fst_file, config=config), inputs, args.fork)
    except (ValueError, OSError, CommandError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    write_table((row for rows in results for row in rows), COLUMNS)
    return 0


if __name__ == "__main__":
    sys.exit(main())
