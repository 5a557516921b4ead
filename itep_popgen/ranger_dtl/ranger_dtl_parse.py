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
Parse Ranger-DTL reconciliation output into two tab-delimited tables.

  <prefix>_node.txt   reconciliation detailed by gene tree node
                      (tree_id, gene_node, species_node, category, recipient)
  <prefix>_tree.txt   reconciliation summed by gene tree
                      (tree_id, min_cost, duplications, transfers, losses)

Species tree internal nodes are reported as the pair of species tree leaves
whose LCA is that node ('A|B'), so results from different runs with the same
species tree can be compared regardless of Ranger's internal node names.

Usage:
    ranger-dtl-parse < ranger.dtl.out
    ranger-dtl-parse -p my_run ranger_1.out ranger_2.out
"""

import argparse
import fileinput
import logging
import re
import sys
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Tuple

from ..utils.trees import Tree, build_lca_index, fingerprint
from ..utils.utility import setup_logging, write_table

logger = logging.getLogger(__name__)

NODE_COLUMNS = ["tree_id", "gene_node", "species_node", "category", "recipient"]
TREE_COLUMNS = ["tree_id", "min_cost", "duplications", "transfers", "losses"]

TREE_HEADER_RE = re.compile(r"Reconciliation for Gene Tree (\d+)")
EVENT_SPLIT_RE = re.compile(r"= +LCA\[|\]: +|, +| +--> +")
COST_SPLIT_RE = re.compile(r" \(|, |: |\)")
EVENT_FIELDS = {"Speciation": 6, "Duplication": 6, "Transfer": 8}


@dataclass
class GeneTreeNode:
    tree_id: str
    gene_node: str
    species_node: str
    category: str
    recipient: str = ""

    def row(self):
        return [self.tree_id, self.gene_node, self.species_node, self.category, self.recipient]


@dataclass
class TreeSummary:
    tree_id: str
    min_cost: str
    duplications: str
    transfers: str
    losses: str

    def row(self):
        return [self.tree_id, self.min_cost, self.duplications, self.transfers, self.losses]


@dataclass
class Reconciliation:
    nodes: List[GeneTreeNode] = field(default_factory=list)
    trees: List[TreeSummary] = field(default_factory=list)
    lca_index: Dict[str, Tuple[str, str]] = field(default_factory=dict)


def read_species_tree(lines: Iterator[str]) -> str:
    """Newick string following the next 'Species Tree:' line."""
    tree_str = ""
    for line in lines:
        if not line.startswith("Species Tree:"):
            continue
        inline = line.split(":", 1)[1].strip()
        if inline:
            tree_str = inline
        if not tree_str.endswith(";"):
            for line in lines:
                tree_str += line.strip()
                if tree_str.endswith(";"):
                    break
        break
    if not tree_str.endswith(";"):
        raise ValueError("No species tree found in the Ranger-DTL output")
    return tree_str


def parse_event_line(tree_id: str, line: str, lca_index: Dict[str, Tuple[str, str]]) -> GeneTreeNode:
    """
    Parse an internal gene tree node line, e.g.:

        m3 = LCA[a_1, b_2]: Transfer, Mapping --> n2, Recipient --> C
    """
    fields = EVENT_SPLIT_RE.split(line.strip())
    category = fields[3] if len(fields) > 3 else None
    if category not in EVENT_FIELDS or len(fields) != EVENT_FIELDS[category]:
        raise ValueError(f"Gene tree {tree_id}: cannot parse reconciliation line: '{line.strip()}'")

    def resolve(label):
        return fingerprint(lca_index[label]) if label in lca_index else label

    return GeneTreeNode(
        tree_id=tree_id,
        gene_node="|".join(fields[1:3]),
        species_node=resolve(fields[5]),
        category=category,
        recipient=resolve(fields[7]) if category == "Transfer" else "",
    )


def parse_cost_line(tree_id: str, line: str) -> TreeSummary:
    """'The minimum reconciliation cost is: 5 (Duplications: 1, Transfers: 1, Losses: 2)'"""
    try:
        parts = COST_SPLIT_RE.split(line.strip().split(": ", 1)[1])
    except IndexError:
        parts = []
    if len(parts) < 7 or parts[1:6:2] != ["Duplications", "Transfers", "Losses"]:
        raise ValueError(f"Gene tree {tree_id}: cannot parse cost line: '{line.strip()}'")
    return TreeSummary(tree_id, parts[0], parts[2], parts[4], parts[6])


def parse_block(lines: Iterator[str], tree_id: str, result: Reconciliation) -> None:
    for line in lines:
        if not line.strip():
            continue
        if "The minimum reconciliation cost" in line:
            result.trees.append(parse_cost_line(tree_id, line))
            return
        if "Leaf Node" in line:
            result.nodes.append(GeneTreeNode(tree_id, line.split(": ", 1)[0].strip(), "", "Leaf", ""))
        else:
            result.nodes.append(parse_event_line(tree_id, line, result.lca_index))
    raise ValueError(f"Gene tree {tree_id}: reconciliation block has no minimum cost line")


def parse_ranger_dtl(lines: Iterable[str]) -> Reconciliation:
    """
    Parse a Ranger-DTL report (one or more gene trees).

    The species tree is read once, from the first gene tree section, and
    indexed before any reconciliation line is resolved.

    Raises:
        LCAIndexError: species tree internal nodes lack usable labels
        ValueError: malformed reconciliation or cost line
    """
    lines = iter(lines)
    result = Reconciliation()
    tree_id = None
    for line in lines:
        if not line.strip():
            continue
        m = TREE_HEADER_RE.search(line)
        if m:
            tree_id = m.group(1)
            if not result.lca_index:
                result.lca_index = build_lca_index(Tree.from_newick(read_species_tree(lines)))
        elif line.startswith("Reconciliation:"):
            if tree_id is None:
                raise ValueError("Reconciliation block found before any 'Reconciliation for Gene Tree' header")
            parse_block(lines, tree_id, result)
    return result


def write_reconciliation(result: Reconciliation, prefix: str) -> Tuple[str, str]:
    node_file, tree_file = f"{prefix}_node.txt", f"{prefix}_tree.txt"
    write_table((n.row() for n in result.nodes), NODE_COLUMNS, node_file)
    write_table((t.row() for t in result.trees), TREE_COLUMNS, tree_file)
    return node_file, tree_file


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Parse Ranger-DTL output into node and tree tables.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("inputs", nargs="*", help="Ranger-DTL output file(s) [STDIN]")
    parser.add_argument("-p", "--prefix", default="ranger-dtl_parse", help="Output file prefix [%(default)s]")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress to STDERR")
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        with fileinput.input(files=args.inputs or ("-",)) as lines:
            result = parse_ranger_dtl(lines)
        node_file, tree_file = write_reconciliation(result, args.prefix)
    except (ValueError, OSError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    logger.info("Wrote %d node rows to %s and %d tree rows to %s",
                len(result.nodes), node_file, len(result.trees), tree_file)
    return 0


if __name__ == "__main__":
    sys.exit(main())
