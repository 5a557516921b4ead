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
Run PAML's yn00 on a directory of codon alignments and summarise omega by group.

Outputs:
    <prefix>_results.txt   every pairwise comparison; Nei & Gojobori (NG) and
                           Yang & Nielsen (YN) estimates
    <prefix>_summary.txt   mean omega per group pair (NA values excluded)
"""

import argparse
import functools
import logging
import re
import sys
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Tuple

from ..utils.utility import (NA, CommandError, format_value, load_group_table, read_fasta,
                             replace_extension, require_executables, run_batch, run_command,
                             setup_logging, working_directory, write_table)

logger = logging.getLogger(__name__)

FASTA_EXTENSIONS = ("fasta", "fna", "fa")
RESULT_COLUMNS = ["method", "file", "group1", "group2", "seq1", "seq2",
                  "S", "N", "t", "kappa", "omega", "dN_SE", "dS_SE"]
SUMMARY_COLUMNS = ["method", "file", "group1", "group2", "mean_omega"]

NG_HEADER_RE = re.compile(r"^Nei & Gojobori 1986\. dN/dS \(dN, dS\)")
NG_CELL_RE = re.compile(r"(-?\d+\.\d+)\s*\((-?\d+\.\d+)\s+(-?\d+\.\d+)\)")

CTL_TEMPLATE = """\
     seqfile = {seqfile}      * sequence data file name
     outfile = {outfile}     * main result file
     verbose = 0  * 1: detailed output (list sequences), 0: concise output

       icode = 0  * 0:universal code; 1:mammalian mt; 2-10:see below
   weighting = 0  * weighting pathways between codons (0/1)?
  commonf3x4 = 0  * use one set of codon freqs for all pairs (0/1)?
"""


@dataclass(frozen=True)
class Yn00Config:
    groups: Dict[str, str]
    binary: str = "yn00"


def fasta_to_phylip(seqs: Dict[str, str], outfile: Path, source: str = "") -> Dict[str, str]:
    """
    Write sequential PHYLIP with index names (1..N); returns index -> sequence name.
    """
    lengths = {len(s) for s in seqs.values()}
    if len(lengths) > 1:
        raise ValueError(f"Sequences are not the same length in '{source}'")
    index = {}
    with open(outfile, "w") as out:
        out.write(f"   {len(seqs)}   {lengths.pop() if lengths else 0}\n")
        for i, (name, seq) in enumerate(seqs.items(), 1):
            out.write(f"{i}          \n{seq}\n")
            index[str(i)] = name
    return index


def parse_ng(lines: List[str]) -> List[Tuple[str, str, str, str, str]]:
    """
    Lower-triangle 'omega (dN dS)' matrix -> (seq1, seq2, omega, dN, dS).
    The value in column k of row i compares sequence i with sequence k.
    """
    rows = []
    for line in lines:
        if not line.strip() or re.match(r"^\S+ \S+", line):
            continue
        name = line.split()[0]
        rows.append((name, NG_CELL_RE.findall(line)))

    table = []
    for i, (name, cells) in enumerate(rows):
        for k, (omega, dn, ds) in enumerate(cells):
            if k >= i:
                raise ValueError(f"Unexpected Nei & Gojobori matrix row: '{name}'")
            omega = NA if float(omega) == -1 else omega
            table.append((name, rows[k][0], omega, dn, ds))
    return table


def parse_yn(lines: List[str]) -> List[List[str]]:
    """'seq seq S N t kappa omega dN +- SE dS +- SE' rows."""
    table = []
    for line in lines:
        if not line.strip():
            continue
        fields = line.split()
        if len(fields) != 13 or fields[8] != "+-" or fields[11] != "+-":
            raise ValueError(f"Cannot parse Yang & Nielsen line: '{line.strip()}'")
        omega = NA if float(fields[6]) >= 99 else fields[6]
        table.append(fields[:6] + [omega, f"{fields[7]}+-{fields[9]}", f"{fields[10]}+-{fields[12]}"])
    return table


def parse_yn00(text: str) -> Dict[str, list]:
    """Split yn00 main output into its NG and YN sections and parse both."""
    lines = text.splitlines()
    ng_lines, yn_lines = [], []
    i = 0
    while i < len(lines):
        line = lines[i]
        if NG_HEADER_RE.match(line):
            i += 1
            while i < len(lines) and "Yang & Nielsen (2000) method" not in lines[i]:
                ng_lines.append(lines[i])
                i += 1
            continue
        if line.startswith("(B) Yang"):
            while i < len(lines) and not lines[i].startswith("seq. seq."):
                i += 1
            i += 1
            while i < len(lines) and not lines[i].startswith("(C) LWL85"):
                yn_lines.append(lines[i])
                i += 1
            continue
        i += 1
    return {"NG": parse_ng(ng_lines), "YN": parse_yn(yn_lines)}


def group_of(seq_index: str, index: Dict[str, str], groups: Dict[str, str], infile: str) -> Tuple[str, str]:
    name = index.get(seq_index, seq_index)
    if name not in groups:
        raise ValueError(f"cannot find group for '{name}' in {infile}")
    return name, groups[name]


def call_yn00(infile: str, config: Yn00Config) -> Dict[str, List[List[str]]]:
    """Result rows (without method/file) per method for one alignment."""
    seqs = read_fasta(infile)
    with working_directory(prefix="yn00_") as tmp:
        phy = tmp / replace_extension(Path(infile).name, "_phy.txt")
        index = fasta_to_phylip(seqs, phy, infile)
        yn00_out = Path(replace_extension(phy, "_res.txt"))
        ctl = Path(replace_extension(phy, ".ctl"))
        ctl.write_text(CTL_TEMPLATE.format(seqfile=phy.name, outfile=yn00_out.name))

        run_command([config.binary, ctl.name], cwd=tmp)
        if not yn00_out.is_file():
            raise CommandError(f"yn00 did not write {yn00_out.name} for {infile}")
        parsed = parse_yn00(yn00_out.read_text())

    results = {"NG": [], "YN": []}
    for seq1, seq2, omega, dn, ds in parsed["NG"]:
        name1, group1 = group_of(seq1, index, config.groups, infile)
        name2, group2 = group_of(seq2, index, config.groups, infile)
        results["NG"].append([group1, group2, name1, name2, NA, NA, NA, NA, omega, dn, ds])
    for fields in parsed["YN"]:
        name1, group1 = group_of(fields[0], index, config.groups, infile)
        name2, group2 = group_of(fields[1], index, config.groups, infile)
        results["YN"].append([group1, group2, name1, name2] + fields[2:])
    return results


def summary_rows(method: str, infile: str, rows: List[List[str]]) -> List[List[str]]:
    sums = defaultdict(lambda: [0.0, 0])
    for row in rows:
        acc = sums[tuple(sorted(row[:2]))]
        if row[8] != NA:
            acc[0] += float(row[8])
            acc[1] += 1
    return [[method, infile, g1, g2, format_value(total / n) if n else NA]
            for (g1, g2), (total, n) in sorted(sums.items())]


def load_file_list(fasta_dir) -> List[str]:
    fasta_dir = Path(fasta_dir)
    if not fasta_dir.is_dir():
        raise FileNotFoundError(f"{fasta_dir} not found!")
    files = sorted(str(p) for p in fasta_dir.iterdir()
                   if p.is_file() and p.suffix.lstrip(".") in FASTA_EXTENSIONS)
    logger.info("Number of fasta files found: %d", len(files))
    return files


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Run yn00 on codon alignments and summarise dN/dS (omega) by group.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("-g", "--group", required=True, help="Group file (sequence<TAB>group)")
    parser.add_argument("-d", "--directory", required=True, help="Directory of codon alignments (fasta|fna|fa)")
    parser.add_argument("-p", "--prefix", default="yn00", help="Output file prefix [%(default)s]")
    parser.add_argument("-f", "--fork", type=int, default=1, help="Number of parallel yn00 calls (0 = auto) [%(default)s]")
    parser.add_argument("--yn00-binary", default="yn00", help="yn00 executable [%(default)s]")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress to STDERR")
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        require_executables([args.yn00_binary])
        files = load_file_list(args.directory)
        config = Yn00Config(load_group_table(args.group), args.yn00_binary)
        results = run_batch(functools.partial(call_yn00, config=config), files, args.fork)

        result_rows, summary = [], []
        for method in ("NG", "YN"):
            for infile, res in zip(files, results):
                result_rows.extend([method, infile] + row for row in res[method])
                summary.extend(summary_rows(method, infile, res[method]))
        write_table(result_rows, RESULT_COLUMNS, f"{args.prefix}_results.txt")
        write_table(summary, SUMMARY_COLUMNS, f"{args.prefix}_summary.txt")
    except (ValueError, OSError, CommandError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
