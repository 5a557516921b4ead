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
Convert an ITEP geneInfo table (STDIN) into GFF (STDOUT).

GFF columns are taken from the geneInfo columns:
    contig (5), organism (2), 'CDS', start (6), end (7), '.', strand (8), col 9, attributes

Attributes are 'column_number,label' pairs (1-based columns) written as
label="value" and joined by ';'. Pairs given with --attribute are added after
the defaults (14,note 10,product 1,name); a pair naming a column already in use
relabels that column.

Example:
    db_getGeneInformation.py < geneIDs | itep-geneinfo2gff -a 3,locus > genes.gff
"""

import argparse
import logging
import sys
from typing import Iterable, Iterator, List, Tuple

from ..utils.utility import setup_logging

logger = logging.getLogger(__name__)

DEFAULT_ATTRIBUTES = ["14,note", "10,product", "1,name"]
MIN_COLUMNS = 9


def parse_attributes(specs: Iterable[str]) -> List[Tuple[int, str]]:
    """['14,note', ...] -> [(13, 'note'), ...] (0-based column, label); one label per column"""
    atts = {}
    for spec in specs:
        parts = spec.split(",")
        if len(parts) != 2 or not parts[0].isdigit() or int(parts[0]) < 1:
            raise ValueError("attributes must be comma delimited pairs (column_num,attribute_label)!")
        atts[int(parts[0]) - 1] = parts[1]
    return list(atts.items())


def gene_info_to_gff(lines: Iterable[str], atts: List[Tuple[int, str]]) -> Iterator[str]:
    for lineno, line in enumerate(lines, 1):
        line = line.rstrip("\r\n")
        if not line.strip():
            continue
        l = line.split("\t")
        if len(l) < MIN_COLUMNS:
            raise ValueError(f"line {lineno}: geneInfo rows need >= {MIN_COLUMNS} columns, found {len(l)}")

        attributes = []
        for col, label in atts:
            if col >= len(l):
                raise ValueError(f"line {lineno}: cannot find specified attribute column {col + 1}")
            attributes.append(f'{label}="{l[col]}"')

        yield "\t".join([l[4], l[1].replace(" ", "_"), "CDS", l[5], l[6], ".", l[7], l[8],
                         ";".join(attributes)])


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Convert ITEP geneInfo (STDIN) to GFF (STDOUT).",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("-a", "--attribute", nargs="+", action="extend", default=[],
                        help=f"Extra attribute column,label pairs (added to: {' '.join(DEFAULT_ATTRIBUTES)})")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress to STDERR")
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        atts = parse_attributes(DEFAULT_ATTRIBUTES + args.attribute)
        for row in gene_info_to_gff(sys.stdin, atts):
            sys.stdout.write(row + "\n")
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
