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
Run SNAP (Synonymous Non-synonymous Analysis Program) on codon alignments.

Outputs:
    <prefix>_summary.txt    file, ds, dn, ds_dn, dn_ds (averages of all pairwise comparisons)
    <prefix>_by-group.txt   file, group1, group2, ave_ds, ave_dn, ave_ds_dn, ave_dn_ds
                            (only with --group; NA for group pairs without comparisons)
"""

import argparse
import functools
import logging
import re
import sys
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..utils.utility import (NA, CommandError, check_file_io, format_value, load_group_table,
                             read_fasta, replace_extension, run_batch, run_command, setup_logging,
                             working_directory, write_table)

logger = logging.getLogger(__name__)

SUMMARY_COLUMNS = ["file", "ds", "dn", "ds_dn", "dn_ds"]
BY_GROUP_COLUMNS = ["file", "group1", "group2", "ave_ds", "ave_dn", "ave_ds_dn", "ave_dn_ds"]

PAIR_LINE_RE = re.compile(r"^\d+ +\d+")


@dataclass(frozen=True)
class SNAPConfig:
    groups: Optional[Dict[str, str]] = None
    binary: str = "SNAP.pl"


@dataclass
class SNAPResult:
    file: str
    ds: str = NA
    dn: str = NA
    ds_dn: str = NA
    # (group1, group2) -> [sum ds, sum dn, sum ds/dn, N]
    by_group: Dict[Tuple[str, str], List[float]] = field(default_factory=dict)


def calc_dn_ds(ds_dn):
    try:
        ds_dn = float(ds_dn)
    except (TypeError, ValueError):
        return NA
    return 1 / ds_dn if ds_dn > 0 else NA


def fasta_to_table(infile, outdir: Path) -> Path:
    """SNAP input: one 'name<TAB>sequence' line per sequence."""
    seqs = read_fasta(infile)
    outfile = outdir / replace_extension(Path(infile).name, ".txt")
    with open(outfile, "w") as out:
        for name, seq in seqs.items():
            out.write(f"{name}\t{seq.replace('.', '-')}\n")
    return outfile


def parse_snap_summary(text: str, infile: str, groups: Optional[Dict[str, str]] = None) -> SNAPResult:
    result = SNAPResult(infile)
    sums = defaultdict(lambda: [0.0, 0.0, 0.0, 0])
    for line in text.splitlines():
        if groups is not None and PAIR_LINE_RE.match(line):
            fields = re.split(r" +", line.strip())
            if len(fields) < 13:
                raise ValueError(f"{infile}: cannot parse SNAP comparison line: '{line.strip()}'")
            if fields[12] == NA:  # no ds/dn
                continue
            for seq in fields[2:4]:
                if seq not in groups:
                    raise ValueError(f"{seq} not found in group file!")
            key = tuple(sorted((groups[fields[2]], groups[fields[3]])))
            acc = sums[key]
            acc[0] += float(fields[10])
            acc[1] += float(fields[11])
            acc[2] += float(fields[12])
            acc[3] += 1

        if "Averages of all pairwise comparisons" in line:
            fields = re.split(r" +", line.replace(",", "").strip())  # 7=ds, 10=dn, 13=ds/dn
            if len(fields) < 14:
                raise ValueError(f"{infile}: cannot parse SNAP averages line: '{line.strip()}'")
            result.ds, result.dn, result.ds_dn = fields[7], fields[10], fields[13]
            break
    result.by_group = dict(sums)
    return result


def call_snap(infile: str, config: SNAPConfig) -> SNAPResult:
    with working_directory(prefix="snap_") as tmp:
        tbl = fasta_to_table(infile, tmp)
        run_command([config.binary, tbl.name], cwd=tmp)
        summary = tmp / f"{tbl.name}.summary"
        if not summary.is_file():
            raise CommandError(f"SNAP did not write {summary.name} for {infile}")
        return parse_snap_summary(summary.read_text(), infile, config.groups)


def summary_rows(results: List[SNAPResult]) -> List[List[str]]:
    return [[r.file, r.ds, r.dn, r.ds_dn, format_value(calc_dn_ds(r.ds_dn))] for r in results]


def by_group_rows(results: List[SNAPResult], groups: Dict[str, str]) -> List[List[str]]:
    ugroup = sorted(set(groups.values()))
    rows = []
    for r in results:
        for i, g1 in enumerate(ugroup):
            for g2 in ugroup[i:]:
                acc = r.by_group.get((g1, g2))
                if acc is None:
                    rows.append([r.file, g1, g2, NA, NA, NA, NA])
                    continue
                ds, dn, ds_dn, n = acc
                rows.append([r.file, g1, g2] + [format_value(v) for v in
                                                (ds / n, dn / n, ds_dn / n, calc_dn_ds(ds_dn / n))])
    return rows


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Run SNAP.pl on each codon alignment; summarise dN/dS overall and by group.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("inputs", nargs="+", help="Codon alignment fasta file(s)")
    parser.add_argument("-g", "--group", help="Group file (sequence<TAB>group)")
    parser.add_argument("-p", "--prefix", default="SNAP_batch", help="Output file prefix [%(default)s]")
    parser.add_argument("-f", "--fork", type=int, default=1, help="Number of parallel SNAP calls (0 = auto) [%(default)s]")
    parser.add_argument("--snap-binary", default="SNAP.pl", help="SNAP executable [%(default)s]")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress to STDERR")
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        for infile in args.inputs:
            check_file_io(infile, "alignment")
        groups = load_group_table(args.group) if args.group else None
        config = SNAPConfig(groups, args.snap_binary)
        results = run_batch(functools.partial(call_snap, config=config), args.inputs, args.fork)

        if groups:
            write_table(by_group_rows(results, groups), BY_GROUP_COLUMNS, f"{args.prefix}_by-group.txt")
        write_table(summary_rows(results), SUMMARY_COLUMNS, f"{args.prefix}_summary.txt")
    except (ValueError, OSError, CommandError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
