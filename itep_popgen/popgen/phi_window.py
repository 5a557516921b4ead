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
Run PhiPack's Phi recombination test along a sliding alignment window.

The input is a MAF file of locally collinear blocks (LCBs, e.g. from Mauve or
mugsy) or a single aligned fasta, which is treated as LCB 1. Each window of
--size columns, advanced by --step, is written to its own fasta and tested.
Taxon names are the part of a MAF sequence name before the first '.'.

Output columns (STDOUT): LCB start end test pvalue
Window positions are 1-indexed and inclusive. 'NA' p-values mark windows
without enough phylogenetic information for Phi.

Example:
    phi-window genomes.maf -n 1000 -s 100 -f 8 > phi_window.txt
"""

import argparse
import functools
import logging
import re
import sys
from typing import Iterator, List, Tuple

from ..utils.alignment import Alignment
from ..utils.utility import (CommandError, check_file_io, run_batch, setup_logging,
                             working_directory, write_table)
from .phi_gene_batch import PhiConfig, run_phi

logger = logging.getLogger(__name__)

COLUMNS = ["LCB", "start", "end", "test", "pvalue"]
MULT_RE = re.compile(r"\bmult=(\d+)")


def read_maf(path, min_mult: int = 0) -> Iterator[Tuple[int, Alignment]]:
    """
    LCBs of a MAF file as (LCB number, alignment).

    Blocks are numbered in file order, including the skipped ones, so numbers
    stay comparable between runs with different --mult values.
    """
    number = 0
    seqs = {}
    skip = False
    with open(path) as fh:
        for line in fh:
            if line.startswith("a "):
                number += 1
                mult = MULT_RE.search(line)
                skip = mult is not None and int(mult.group(1)) < min_mult
                if skip:
                    logger.warning("Skipping LCB%d: number of taxa in LCB is < --mult", number)
                else:
                    logger.info("Processing LCB%d", number)
            elif line.startswith("s "):
                if skip:
                    continue
                fields = line.split()
                if len(fields) < 7:
                    raise ValueError(f"{path}: malformed MAF sequence line: '{line.strip()}'")
                seqs[fields[1].split(".")[0]] = fields[6]
            elif not line.strip():
                skip = False
                if seqs:
                    yield number, check_aligned(Alignment(seqs), path, number)
                    seqs = {}
    if seqs:
        yield number, check_aligned(Alignment(seqs), path, number)


def check_aligned(aln: Alignment, path, number: int) -> Alignment:
    if not aln.is_aligned():
        raise ValueError(f"{path}: sequences in LCB{number} are not all the same length")
    return aln


def windows(length: int, size: int, step: int) -> List[Tuple[int, int]]:
    """0-based [start, end) windows covering the alignment; the last ones may be short."""
    return [(start, min(start + size, length)) for start in range(0, length, step)]


def make_jobs(blocks, size: int, step: int) -> List[Tuple[int, int, int, Alignment]]:
    jobs = []
    for number, aln in blocks:
        for start, end in windows(aln.length, size, step):
            jobs.append((number, start, end, aln.slice(start, end)))
    return jobs


def call_phi_window(job: Tuple[int, int, int, Alignment], config: PhiConfig) -> List[List[str]]:
    number, start, end, window = job
    label = f"LCB{number}:{start + 1}-{end}"
    with working_directory(prefix="phi_window_") as tmp:
        fasta = tmp / "window.fasta"
        with open(fasta, "w") as fh:
            for name, seq in window.sequences().items():
                fh.write(f">{name}\n{seq}\n")
        tests = run_phi(fasta, config, label)
    return [[str(number), str(start + 1), str(end), test, tests[test]] for test in sorted(tests)]


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Run Phi (PhiPack) along a sliding window of each LCB.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("input", help="MAF file (or aligned fasta with --fasta)")
    parser.add_argument("--fasta", action="store_true", help="Input is a single aligned fasta")
    parser.add_argument("-n", "--size", type=int, default=1000, help="Sliding window size (bp) [%(default)s]")
    parser.add_argument("-s", "--step", type=int, default=100, help="Sliding window step (bp) [%(default)s]")
    parser.add_argument("-m", "--mult", type=int, default=0,
                        help="Skip LCBs with fewer than this many taxa [%(default)s]")
    parser.add_argument("-w", "--window", type=int, default=100, help="Phi window size ('-w' in Phi) [%(default)s]")
    parser.add_argument("-p", "--permutations", type=int, default=1000,
                        help="Number of permutations (0 = no permutation test) [%(default)s]")
    parser.add_argument("-o", "--all-tests", action="store_true", help="Also run NSS and Max Chi^2 tests")
    parser.add_argument("-f", "--fork", type=int, default=1, help="Number of parallel Phi calls (0 = auto) [%(default)s]")
    parser.add_argument("--phi-binary", default="Phi", help="Phi executable [%(default)s]")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress to STDERR")
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        if args.size < 1 or args.step < 1:
            raise ValueError("--size and --step must be >= 1")
        check_file_io(args.input, "alignment")
        if args.fasta:
            blocks = [(1, Alignment.from_fasta(args.input, check=True))]
        else:
            blocks = read_maf(args.input, args.mult)
        jobs = make_jobs(blocks, args.size, args.step)
        if not jobs:
            raise ValueError(f"No alignment blocks found in '{args.input}'")

        config = PhiConfig(args.window, args.permutations, args.all_tests, args.phi_binary)
        results = run_batch(functools.partial(call_phi_window, config=config), jobs, args.fork)
    except (ValueError, OSError, CommandError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    write_table((row for rows in results for row in rows), COLUMNS)
    return 0


if __name__ == "__main__":
    sys.exit(main())
