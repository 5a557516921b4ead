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
rdtl-db: SQLite database of Ranger-DTL reconciliation results.

Subcommands:
    make              create the database tables
    load              load ranger-dtl-parse node/tree tables for one Ranger run
    load-bootstrap    bootstrap summary of each cluster's gene tree
    load-node-clade   assign species tree nodes to clades
"""

import argparse
import logging
import sqlite3
import sys
from typing import Dict, List, Optional, Tuple

import pandas as pd

from ..ranger_dtl.ranger_dtl_parse import NODE_COLUMNS, TREE_COLUMNS
from ..utils.trees import Tree
from ..utils.utility import check_file_io, describe, load_list, read_table, setup_logging
from .database import connect, insert_rows, make_db, read_input_table, report, to_float

logger = logging.getLogger(__name__)

DB_NAME = "rdtl-db"

SCHEMA = {
    "Ranger_run": """
CREATE TABLE Ranger_run(
Ranger_runID	TEXT	PRIMARY KEY	ON CONFLICT REPLACE,
Species_tree	TEXT,
Species_tree_file	TEXT
);""",
    "Tree_meta": """
CREATE TABLE Tree_meta(
Ranger_runID	TEXT	NOT NULL,
TreeID	INTEGER	NOT NULL,
ClusterID	TEXT	NOT NULL,
UNIQUE(Ranger_runID, TreeID)
ON CONFLICT REPLACE
);""",
    "Node": """
CREATE TABLE Node(
Ranger_runID	TEXT	NOT NULL,
TreeID	INTEGER	NOT NULL,
Gene_NodeID	TEXT	NOT NULL,
Species_NodeID	TEXT,
Category	TEXT	NOT NULL,
T_recipient	TEXT,
UNIQUE(Ranger_runID, TreeID, Gene_NodeID)
ON CONFLICT REPLACE
);""",
    "Tree": """
CREATE TABLE Tree(
Ranger_runID	TEXT	NOT NULL,
TreeID	INTEGER	NOT NULL,
Min_cost	REAL,
Duplications	INTEGER,
Transfers	INTEGER,
Losses	INTEGER,
UNIQUE(Ranger_runID, TreeID)
ON CONFLICT REPLACE
);""",
    "Bootstrap": """
CREATE TABLE Bootstrap(
ClusterID	TEXT	NOT NULL,
Min	REAL,
Q1	REAL,
Mean	REAL,
Median	REAL,
Q3	REAL,
Max	REAL,
Stdev	REAL,
UNIQUE(ClusterID)
ON CONFLICT REPLACE
);""",
    "Node_clade": """
CREATE TABLE Node_clade(
Species_NodeID	TEXT	NOT NULL,
CladeID	TEXT,
UNIQUE(Species_NodeID)
ON CONFLICT REPLACE
);""",
}


# =============================================================================
# load
# =============================================================================

def _none_if_empty(value: str) -> Optional[str]:
    return value if value != "" else None


def load_ranger_run(conn, run_id: str, node_df: pd.DataFrame, tree_df: pd.DataFrame,
                    tree_meta: Optional[List[List[str]]] = None, species_tree: Optional[str] = None) -> Dict[str, int]:
    """Insert one Ranger run; all tables are committed together or not at all."""
    counts = {}
    newick = Tree.read(species_tree).to_newick() if species_tree else None
    with conn:
        counts["Ranger_run"] = insert_rows(conn, "Ranger_run", ["Ranger_runID", "Species_tree", "Species_tree_file"],
                                           [(run_id, newick, species_tree)], commit=False)
        counts["Node"] = insert_rows(
            conn, "Node", ["Ranger_runID", "TreeID", "Gene_NodeID", "Species_NodeID", "Category", "T_recipient"],
            ((run_id, int(r.tree_id), r.gene_node, _none_if_empty(r.species_node), r.category,
              _none_if_empty(r.recipient)) for r in node_df.itertuples(index=False)), commit=False)
        counts["Tree"] = insert_rows(
            conn, "Tree", ["Ranger_runID", "TreeID", "Min_cost", "Duplications", "Transfers", "Losses"],
            ((run_id, int(r.tree_id), to_float(r.min_cost), int(r.duplications), int(r.transfers), int(r.losses))
             for r in tree_df.itertuples(index=False)), commit=False)
        if tree_meta:
            counts["Tree_meta"] = insert_rows(conn, "Tree_meta", ["Ranger_runID", "TreeID", "ClusterID"],
                                              ((run_id, int(t), c) for t, c in tree_meta), commit=False)
    return counts


# =============================================================================
# load-bootstrap
# =============================================================================

def tree_bootstrap_stats(tree: Tree) -> list:
    """Min Q1 Mean Median Q3 Max Stdev of internal node support (missing = 0)."""
    values = []
    for node in tree.internal_nodes():
        boot = Tree.bootstrap(node)
        if node is tree.root and boot is None:
            continue
        values.append(boot or 0)
    if not values:
        raise ValueError("tree has no internal nodes")
    stat = describe(values)
    return [stat.min, stat.q1, stat.mean, stat.median, stat.q3, stat.max,
            stat.stdev if stat.N > 1 else None]


def load_bootstrap(conn, tree_files: List[str], clusters: List[str]) -> int:
    if len(tree_files) != len(clusters):
        raise ValueError(f"Number of trees ({len(tree_files)}) != number of clusters ({len(clusters)})")
    rows = []
    for tree_file, cluster in zip(tree_files, clusters):
        logger.info("...processing: %s", tree_file)
        try:
            rows.append([cluster] + tree_bootstrap_stats(Tree.read(check_file_io(tree_file, "tree file"))))
        except ValueError as e:
            raise ValueError(f"{tree_file}: {e}") from e
    return insert_rows(conn, "Bootstrap", ["ClusterID", "Min", "Q1", "Mean", "Median", "Q3", "Max", "Stdev"], rows)


# =============================================================================
# load-node-clade
# =============================================================================

def load_taxa_clade_list(path, delimiter: str = "__") -> Dict[str, str]:
    taxa_clade = {}
    for row in read_table(path, 1, label="taxa-clade list"):
        line = "\t".join(row)
        parts = line.split(delimiter)
        if len(parts) != 2:
            raise ValueError(f"'{line}' is not split into 2 columns by '{delimiter}'!")
        taxa_clade[parts[0]] = parts[1]
    return taxa_clade


def species_nodes(conn) -> List[str]:
    rows = conn.execute("SELECT Species_NodeID, T_recipient FROM Node "
                        "GROUP BY Species_NodeID, T_recipient").fetchall()
    if not rows:
        raise ValueError("no matching entries in the Node table!")
    return sorted({v for row in rows for v in row if v})


def node_clades(nodes: List[str], taxa_clade: Dict[str, str]) -> List[Tuple[str, Optional[str]]]:
    """Clade of each species node; None when the node's taxa span several clades."""
    rows = []
    for sp_node in nodes:
        taxa = sp_node.split("|")
        if len(taxa) not in (1, 2):
            raise ValueError(f"number of taxa != 1 or 2 for {sp_node}!")
        missing = [t for t in taxa if t not in taxa_clade]
        if missing:
            for taxon in missing:
                logger.warning("cannot find %s in taxa_clade list! Skipping!", taxon)
            continue
        clades = {taxa_clade[t] for t in taxa}
        rows.append((sp_node, clades.pop() if len(clades) == 1 else None))
    return rows


# =============================================================================
# CLI
# =============================================================================

def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Make and load the rdtl-db reconciliation database.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress to STDERR")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("make", help="Create the database")
    p.add_argument("database")
    p.add_argument("-r", "--replace", action="store_true", help="Replace an existing database")

    p = sub.add_parser("load", help="Load ranger-dtl-parse tables")
    p.add_argument("-d", "--database", required=True)
    p.add_argument("-r", "--run-id", required=True, help="Ranger run ID")
    p.add_argument("-n", "--node", required=True, help="*_node.txt table")
    p.add_argument("-t", "--tree", required=True, help="*_tree.txt table")
    p.add_argument("-m", "--meta", help="Tree metadata (tree_id<TAB>cluster_id)")
    p.add_argument("-s", "--species-tree", help="Species tree used for the run (newick)")

    p = sub.add_parser("load-bootstrap", help="Load gene tree bootstrap summaries")
    p.add_argument("-d", "--database", required=True)
    p.add_argument("-t", "--trees", required=True, help="List of tree files (one per line)")
    p.add_argument("-c", "--clusters", required=True, help="List of cluster IDs (same order as --trees)")

    p = sub.add_parser("load-node-clade", help="Assign species tree nodes to clades")
    p.add_argument("-d", "--database", required=True)
    p.add_argument("-t", "--taxa", required=True, help="taxon<delimiter>clade list")
    p.add_argument("--delimiter", default="__", help="taxon/clade delimiter [%(default)s]")

    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        if args.command == "make":
            make_db(args.database, SCHEMA, args.replace)
            return 0

        if args.command == "load":
            node_df = read_input_table(args.node, NODE_COLUMNS, "node table")
            tree_df = read_input_table(args.tree, TREE_COLUMNS, "tree table")
            meta = read_table(args.meta, 2, 2, label="tree metadata") if args.meta else None
            conn = connect(args.database, ["Ranger_run", "Node", "Tree", "Tree_meta"])
            counts = load_ranger_run(conn, args.run_id, node_df, tree_df, meta, args.species_tree)
        elif args.command == "load-bootstrap":
            trees = load_list(args.trees, "tree list")
            clusters = load_list(args.clusters, "cluster list")
            conn = connect(args.database, ["Bootstrap"])
            counts = {"Bootstrap": load_bootstrap(conn, trees, clusters)}
        else:
            taxa_clade = load_taxa_clade_list(args.taxa, args.delimiter)
            conn = connect(args.database, ["Node", "Node_clade"])
            rows = node_clades(species_nodes(conn), taxa_clade)
            counts = {"Node_clade": insert_rows(conn, "Node_clade", ["Species_NodeID", "CladeID"], rows)}
        conn.close()
    except (ValueError, OSError, sqlite3.Error) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    for table, count in counts.items():
        report(DB_NAME, table, count)
    return 0


if __name__ == "__main__":
    sys.exit(main())
