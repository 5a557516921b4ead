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
Bootstrap support summarised by population.

For every pair of population-file taxa found in a tree, the bootstrap value of
their least common ancestor is collected (nodes without a value count as 0)
and summarised per population comparison (pop1__pop2) and in total.

Output columns (STDOUT): file cluster population min q1 mean median q3 max N
"""

import argparse
import logging
import sys
from typing import Dict, List, Tuple

from ..utils.trees import Tree, check_tree_format
from ..utils.utility import (POP_STAT_COLUMNS, PopulationStatistic, check_file_io, load_file_table,
                             load_population_table, population_rows, setup_logging,
                             summarize_by_population, write_table)

logger = logging.getLogger(__name__)


def bootstrap_by_population(tree: Tree, populations: Dict[str, str],
                            source: str = "") -> Dict[str, PopulationStatistic]:
    leaves = {}
    for clade in tree.leaves():
        leaves.setdefault(clade.name, clade)

    pop_taxa = []
    for taxon in sorted(populations):
        if taxon in leaves:
            pop_taxa.append(taxon)
        else:
            logger.info("%s not found in %s", taxon, source)

    values = []
    boot_not_found = 0
    for i, taxon1 in enumerate(pop_taxa):
        for taxon2 in pop_taxa[i + 1:]:
            boot = Tree.bootstrap(tree.lca(leaves[taxon1], leaves[taxon2]))
            if not boot:
                boot = 0
                boot_not_found += 1
            values.append((populations[taxon1], populations[taxon2], boot))

    if boot_not_found:
        logger.info("%d LCA nodes in %s did not have bootstrap values (each given a value of 0)",
                    boot_not_found, source)
    return summarize_by_population(values)


def bootstrap_stats_table(files: List[Tuple[str, str]], populations: Dict[str, str],
                          fmt: str = "newick") -> List[List[str]]:
    rows = []
    for infile, cluster in files:
        logger.info("...processing: %s", infile)
        tree = Tree.read(check_file_io(infile, "tree file"), fmt)
        rows.extend(population_rows(infile, cluster, bootstrap_by_population(tree, populations, infile)))
    return rows


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Summarise LCA bootstrap support between taxa by population.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("-t", "--table", required=True, help="File table (tree_file<TAB>cluster)")
    parser.add_argument("-p", "--population", required=True, help="Population table (taxon<TAB>population)")
    parser.add_argument("-f", "--format", default="newick", help="Tree format (newick|nexus) [%(default)s]")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress to STDERR")
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        fmt = check_tree_format(args.format)
        rows = bootstrap_stats_table(load_file_table(args.table), load_population_table(args.population), fmt)
    except (ValueError, OSError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    write_table(rows, POP_STAT_COLUMNS)
    return 0


if __name__ == "__main__":
    sys.exit(main())
