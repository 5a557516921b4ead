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

"""Tests for the Bio.Phylo tree wrapper and the species tree LCA index."""
import pytest

from itep_popgen.utils.trees import LCAIndexError, Tree, build_lca_index, check_tree_format, fingerprint


class TestTree:
    def test_lca_by_name(self):
        tree = Tree.from_newick("((A,B)n1,C)n0;")
        assert tree.lca("A", "B").name == "n1"
        assert tree.lca("A", "C") is tree.root

    def test_nodes(self):
        tree = Tree.from_newick("((A,B)n1,C)n0;")
        assert [c.name for c in tree.nodes()] == ["n0", "n1", "A", "B", "C"]
        assert [c.name for c in tree.internal_nodes()] == ["n0", "n1"]
        assert tree.leaf_names() == ["A", "B", "C"]

    def test_lca_unknown_leaf(self):
        tree = Tree.from_newick("((A,B)n1,C)n0;")
        with pytest.raises(KeyError):
            tree.lca("A", "Z")

    def test_bootstrap_values(self):
        tree = Tree.from_newick("((a1,a2)90,(b1,b2)70);")
        assert Tree.bootstrap(tree.lca("a1", "a2")) == 90
        assert Tree.bootstrap(tree.lca("b1", "b2")) == 70
        assert Tree.bootstrap(tree.root) is None

    def test_reroot_leaves_original_untouched(self):
        tree = Tree.from_newick("((a,b),(c,d));")
        rerooted = tree.reroot("c")
        assert sorted(rerooted.leaf_names()) == ["a", "b", "c", "d"]
        assert "c" in [clade.name for clade in rerooted.root.clades]
        assert "c" not in [clade.name for clade in tree.root.clades]

    def test_reroot_unknown_leaf(self):
        with pytest.raises(KeyError):
            Tree.from_newick("((a,b),c);").reroot("z")

    def test_tree_format(self):
        assert check_tree_format("NEX") == "nexus"
        with pytest.raises(ValueError):
            check_tree_format("phyloxml")


class TestLCAIndex:
    def test_fingerprint_is_sorted(self):
        assert fingerprint(("B", "A")) == "A|B"

    def test_index_resolves_every_internal_node(self):
        index = build_lca_index(Tree.from_newick("(((A,B)n2,C)n1,(D,E)n3)n0;"))
        assert fingerprint(index["n2"]) == "A|B"
        assert set(index) == {"n0", "n1", "n2", "n3"}
        tree = Tree.from_newick("(((A,B)n2,C)n1,(D,E)n3)n0;")
        for label, (a, b) in index.items():
            assert tree.lca(a, b).name == label

    def test_bootstrap_labels_rejected(self):
        with pytest.raises(LCAIndexError, match="bootstrap values left in the trees"):
            build_lca_index(Tree.from_newick("((A,B)100,C)n0;"))
