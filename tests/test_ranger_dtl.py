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
Tests for the Ranger-DTL tools.

Tests cover:
- Parsing reconciliation reports into node and tree tables
- Species node labels from the LCA index
- ITOL transfer and duplication tables
"""
from collections import Counter

import pandas as pd
import pytest

from itep_popgen.ranger_dtl import ranger_dtl_itol, ranger_dtl_parse
from itep_popgen.ranger_dtl.ranger_dtl_itol import (HEATMAP_COLORS, count_events, dup_rows,
                                                    heatmap_bins, transfer_rows)
from itep_popgen.ranger_dtl.ranger_dtl_parse import parse_event_line, parse_ranger_dtl


class TestParseRangerDTL:
    """Tests for parse_ranger_dtl."""

    def test_species_nodes_use_leaf_pairs(self, ranger_output):
        result = parse_ranger_dtl(ranger_output.splitlines(keepends=True))
        m1 = [n for n in result.nodes if n.tree_id == "1" and n.gene_node == "a_1|b_2"][0]
        assert m1.species_node == "A|B"
        assert m1.category == "Speciation"
        m2 = [n for n in result.nodes if n.tree_id == "1" and n.gene_node == "a_1|c_3"][0]
        assert m2.species_node == "A|C"

    def test_internal_species_node_uses_leaf_pair(self, ranger_output):
        """A duplication mapped to species node n1 is reported as its leaf pair."""
        result = parse_ranger_dtl(ranger_output.splitlines(keepends=True))
        dup = [n for n in result.nodes if n.category == "Duplication"][0]
        assert dup.row() == ["2", "a_1|a_2", "A|B", "Duplication", ""]

    def test_leaf_rows(self, ranger_output):
        result = parse_ranger_dtl(ranger_output.splitlines(keepends=True))
        leaves = [n.row() for n in result.nodes if n.category == "Leaf"]
        assert leaves[0] == ["1", "a_1", "", "Leaf", ""]
        assert len(leaves) == 6

    def test_transfer_recipient(self, ranger_output):
        result = parse_ranger_dtl(ranger_output.splitlines(keepends=True))
        transfer = [n for n in result.nodes if n.category == "Transfer"][0]
        assert transfer.row() == ["2", "a_1|b_3", "A|B", "Transfer", "C"]

    def test_tree_summary_counts_in_order(self, ranger_output):
        result = parse_ranger_dtl(ranger_output.splitlines(keepends=True))
        assert [t.row() for t in result.trees] == [["1", "0", "0", "0", "0"],
                                                   ["2", "10", "2", "1", "3"]]

    def test_malformed_event_line(self):
        with pytest.raises(ValueError, match="cannot parse reconciliation line"):
            parse_event_line("1", "m1 = LCA[a_1, b_2]: Speciation", {})

    def test_missing_cost_line(self, ranger_output):
        text = ranger_output.split("The minimum reconciliation cost")[0]
        with pytest.raises(ValueError, match="no minimum cost line"):
            parse_ranger_dtl(text.splitlines(keepends=True))


class TestRangerDTLParseMain:
    """Tests for the ranger-dtl-parse command."""

    def test_writes_node_and_tree_tables(self, ranger_file, tmp_path):
        prefix = tmp_path / "run"
        assert ranger_dtl_parse.main([str(ranger_file), "-p", str(prefix)]) == 0
        tree_df = pd.read_csv(f"{prefix}_tree.txt", sep="\t", dtype=str)
        assert list(tree_df.columns) == ranger_dtl_parse.TREE_COLUMNS
        assert tree_df.iloc[1].tolist() == ["2", "10", "2", "1", "3"]
        node_df = pd.read_csv(f"{prefix}_node.txt", sep="\t", dtype=str, keep_default_na=False)
        assert list(node_df.columns) == ranger_dtl_parse.NODE_COLUMNS
        assert len(node_df) == 10

    def test_bootstrap_labelled_species_tree(self, ranger_output, write_file, tmp_path, capsys):
        infile = write_file("ranger.out", ranger_output.replace("((A,B)n1,C)n0;", "((A,B)100,C)n0;"))
        assert ranger_dtl_parse.main([str(infile), "-p", str(tmp_path / "run")]) == 1
        assert "bootstrap values left in the trees" in capsys.readouterr().err


class TestITOL:
    """Tests for the ITOL table builders."""

    def test_heatmap_bins(self):
        bins = heatmap_bins(0, 10)
        assert len(bins) == 9
        assert bins[0] == (0, HEATMAP_COLORS[0])
        assert bins[-1] == (8, HEATMAP_COLORS[8])

    def test_heatmap_single_value(self):
        assert heatmap_bins(4, 4) == [(4, HEATMAP_COLORS[0])]

    def test_transfer_rows_use_highest_bin(self):
        rows = transfer_rows(Counter({("A|B", "C"): 10, ("C", "A"): 0}))
        assert rows == [["A|B", "C", HEATMAP_COLORS[8]], ["C", "A", HEATMAP_COLORS[0]]]

    def test_dup_rows(self):
        rows = dup_rows(Counter({"A|B": 2, "C": 1}))
        assert rows == [["LABELS", "duplications"], ["COLORS", "#FF0000"],
                        ["A|B", "R100", "2"], ["C", "1"]]

    def test_count_events(self):
        df = pd.DataFrame([["1", "m1", "A|B", "Transfer", "C"],
                           ["2", "m1", "A|B", "Transfer", "C"],
                           ["2", "m2", "A", "Duplication", ""]], columns=ranger_dtl_parse.NODE_COLUMNS)
        transfers, duplications, n_trees = count_events(df)
        assert transfers == Counter({("A|B", "C"): 2})
        assert duplications == Counter({"A": 1})
        assert n_trees == 2

    def test_main(self, ranger_file, tmp_path):
        prefix = tmp_path / "run"
        assert ranger_dtl_parse.main([str(ranger_file), "-p", str(prefix)]) == 0
        itol = tmp_path / "itol"
        assert ranger_dtl_itol.main([f"{prefix}_node.txt", "-p", str(itol), "-t", "0.5"]) == 0
        assert (tmp_path / "itol_transfers.meta").read_text() == f"A|B\tC\t{HEATMAP_COLORS[0]}\n"
        dup_lines = (tmp_path / "itol_Dup-Loss.txt").read_text().splitlines()
        assert dup_lines[-1] == "A|B\tR100\t1"
