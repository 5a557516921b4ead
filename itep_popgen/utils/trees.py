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
Thin tree interface over Bio.Phylo.

Only the operations the reconciliation and population tools need are exposed:
leaves, nodes, LCA lookup, rerooting and bootstrap access.
"""

import copy
import logging
from io import StringIO
from typing import Dict, List, Optional, Tuple

from Bio import Phylo

logger = logging.getLogger(__name__)

TREE_FORMATS = {"new": "newick", "newick": "newick", "nex": "nexus", "nexus": "nexus"}

LCA_ERROR = ("LCAs not found for all internal nodes in species tree!\n"
             "Were bootstrap values left in the trees???")


class LCAIndexError(ValueError):
    """Species tree internal nodes cannot all be identified by a leaf pair."""


def check_tree_format(fmt: str) -> str:
    try:
        return TREE_FORMATS[fmt.lower()]
    except KeyError:
        raise ValueError(f"Tree format '{fmt}' not recognized (newick|nexus)") from None


class Tree:
    def __init__(self, phylo_tree):
        self.tree = phylo_tree

    @classmethod
    def read(cls, path, fmt: str = "newick") -> "Tree":
        """First tree in a newick/nexus file."""
        trees = cls.read_all(path, fmt)
        if not trees:
            raise ValueError(f"No trees found in {path}")
        return trees[0]

    @classmethod
    def read_all(cls, path, fmt: str = "newick") -> List["Tree"]:
        return [cls(t) for t in Phylo.parse(str(path), check_tree_format(fmt))]

    @classmethod
    def from_newick(cls, text: str) -> "Tree":
        return cls(Phylo.read(StringIO(text.strip()), "newick"))

    def leaves(self):
        return self.tree.get_terminals()

    def leaf_names(self) -> List[str]:
        return [c.name for c in self.leaves()]

    def nodes(self):
        return list(self.tree.find_clades(order="preorder"))

    def internal_nodes(self):
        return self.tree.get_nonterminals()

    @property
    def root(self):
        return self.tree.root

    def find(self, name: str):
        for clade in self.nodes():
            if clade.name == name:
                return clade
        return None

    def lca(self, a, b):
        """Least common ancestor of two clades (or clade names)."""
        targets = []
        for t in (a, b):
            clade = self.find(t) if isinstance(t, str) else t
            if clade is None:
                raise KeyError(f"'{t}' not found in tree")
            targets.append(clade)
        return self.tree.common_ancestor(*targets)

    def reroot(self, leaf: str) -> "Tree":
        """Copy of the tree rooted on the branch leading to 'leaf'."""
        new = copy.deepcopy(self.tree)
        outgroup = next((c for c in new.get_terminals() if c.name == leaf), None)
        if outgroup is None:
            raise KeyError(f"'{leaf}' not found in tree")
        new.root_with_outgroup(outgroup)
        new.rooted = True
        return Tree(new)

    @staticmethod
    def bootstrap(clade) -> Optional[float]:
        """Support value of a node; numeric labels count as support."""
        if clade.confidence is not None:
            return float(clade.confidence)
        if clade.name is not None:
            try:
                return float(clade.name)
            except ValueError:
                return None
        return None

    def to_newick(self) -> str:
        fh = StringIO()
        Phylo.write(self.tree, fh, "newick")
        return fh.getvalue().strip()

    def write(self, path, fmt: str = "newick") -> None:
        Phylo.write(self.tree, str(path), check_tree_format(fmt))


def fingerprint(pair: Tuple[str, str]) -> str:
    """Sorted 'A|B' label of a leaf pair."""
    return "|".join(sorted(pair))


def build_lca_index(tree: Tree) -> Dict[str, Tuple[str, str]]:
    """
    Map each internal node label to a pair of descendant leaves whose LCA is that node.

    Leaves are paired from the outside in (first with last, ...) until the
    computed LCA is the node itself.

    Raises:
        LCAIndexError: an internal node is unlabelled, duplicated or has no leaf pair
    """
    index = {}
    n_internal = 0
    for node in tree.internal_nodes():
        n_internal += 1
        if node.name is None or node.name in index:
            continue
        leaves = node.get_terminals()
        pair = None
        for i in range(len(leaves)):
            for j in range(len(leaves) - 1, i, -1):
                if tree.lca(leaves[i], leaves[j]) is node:
                    pair = (leaves[i].name, leaves[j].name)
                    break
            if pair:
                break
        if pair is not None:
            index[node.name] = pair

    if len(index) != n_internal:
        logger.debug("Indexed %d of %d species tree internal nodes", len(index), n_internal)
        raise LCAIndexError(LCA_ERROR)
    return index
