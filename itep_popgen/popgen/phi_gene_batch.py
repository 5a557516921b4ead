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
Run PhiPack's Phi recombination test on each alignment.

Output columns (STDOUT): file start end test pvalue
Rows are sorted by file and test. Alignments on which Phi reports no test
(e.g. too few informative sites) get 'NA' p-values.
"""

import argparse
import functools
import logging
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List

from ..utils.utility import (NA, CommandError, check_file_io, run_batch, run_command,
                             setup_logging, working_directory, write_table)

logger = logging.getLogger(__name__)

COLUMNS = ["file", "start", "end", "test", "pvalue"]
TEST_LINE_RE = re.compile(r"^(NSS|Max Chi|PHI)")


@dataclass(frozen=True)
class PhiConfig:
    window: int = 100
    permutations: int = 1000
    all_tests: bool = False
    binary: str = "Phi"


def parse_phi_output(text: str) -> Dict[str, str]:
    """
    Test name -> p-value from Phi's report, e.g.

        PHI (Normal):        5.38e-01      ->  PHI_(Normal)  5.38e-01
        Max Chi^2:           1.00e+00      ->  Max_Chi^2     1.00e+00
    """
    results = {}
    for line in re.split(r"[\n\r]", text):
        if not TEST_LINE_RE.match(line):
            continue
        line = line.replace(":", "", 1)
        line = re.sub(r" (C|\()", r"_\1", line, count=1)
        fields = re.split(r" +", line.strip())
        results[fields[0]] = fields[1] if len(fields) > 1 else NA
    return results


def missing_results(config: PhiConfig) -> Dict[str, str]:
    results = {"PHI_(Normal)": NA}
    if config.all_tests:
        results.update({"NSS": NA, "Max_Chi^2": NA})
    if config.permutations:
        results["PHI_(Permutation)"] = NA
    return results


def phi_command(fasta, config: PhiConfig) -> list:
    cmd = [config.binary, "-f", Path(fasta).resolve(), "-w", config.window]
    if config.permutations:
        cmd += ["-p", config.permutations]
    if config.all_tests:
        cmd.append("-o")
    return cmd


def run_phi(fasta, config: PhiConfig, label: str) -> Dict[str, str]:
    """Test -> p-value for one alignment; every expected test is NA if Phi reports none."""
    # Phi writes its log files to the working directory
    with working_directory(prefix="phi_") as tmp:
        result = run_command(phi_command(fasta, config), cwd=tmp, check=False)

    tests = parse_phi_output(result.stdout)
    if not tests:
        logger.warning("No Phi test results for %s (exit %d); reporting NA", label, result.returncode)
        tests = missing_results(config)
    return tests


def call_phi(infile: str, config: PhiConfig) -> List[List[str]]:
    tests = run_phi(infile, config, infile)
    return [[infile, NA, NA, test, tests[test]] for test in sorted(tests)]


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Run Phi (PhiPack) on each alignment and tabulate the p-values.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("inputs", nargs="+", help="Alignment fasta file(s)")
    parser.add_argument("-w", "--window", type=int, default=100, help="Phi window size [%(default)s]")
    parser.add_argument("-p", "--permutations", type=int, default=1000,
                        help="Number of permutations (0 = no permutation test) [%(default)s]")
    parser.add_argument("-o", "--all-tests", action="store_true", help="Also run NSS and Max Chi^2 tests")
    parser.add_argument("-f", "--fork", type=int, default=1, help="Number of parallel Phi calls (0 = auto) [%(default)s]")
    parser.add_argument("--phi-binary", default="Phi", help="Phi executable [%(default)s]")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress to STDERR")
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        for infile in args.inputs:
            check_file_io(infile, "alignment")
        config = PhiConfig(args.window, args.permutations, args.all_tests, args.phi_binary)
        results = run_batch(functools.partial(call_phi, config=config), sorted(set(args.inputs)), args.fork)
    except (OSError, CommandError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    write_table((row for rows in results for row in rows), COLUMNS)
    return 0


if __name__ == "__main__":
    sys.exit(main())
