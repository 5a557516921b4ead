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
PopGen-db: SQLite database of per-cluster population genetics results.

Subcommands:
    make                create the database tables
    load-fst            arlecore-fst-batch output
    load-seqid          seqid-by-pop output (one summary statistic per population pair)
    load-dnds           snap-batch *_by-group.txt output
    load-cluster-info   ITEP geneInfo (STDIN); clusters labelled 'core' or 'variable'
"""

import argparse
import logging
import sqlite3
import sys
from collections import defaultdict
from typing import Dict, Iterable, List

import pandas as pd

from ..popgen.arlecore_fst_batch import COLUMNS as FST_COLUMNS
from ..popgen.snap_batch import BY_GROUP_COLUMNS
from ..utils.utility import STAT_COLUMNS, setup_logging
from .database import (DEFAULT_CLUSTER_REGEX, cluster_id, connect, insert_rows, make_db,
                       read_input_table, report, to_float)

logger = logging.getLogger(__name__)

DB_NAME = "PopGen-db"

SCHEMA = {
    "Cluster_meta": """
CREATE TABLE Cluster_meta(
clusterID	TEXT	NOT NULL,
runID	TEXT	NOT NULL,
core_var	TEXT	NOT NULL,
unique(clusterID, runID)
ON CONFLICT REPLACE
);""",
    "Fst": """
CREATE TABLE Fst(
clusterID	TEXT	NOT NULL,
runID	TEXT	NOT NULL,
pop	TEXT	NOT NULL,
value	REAL	NOT NULL,
ci_low	REAL	NOT NULL,
ci_high	REAL	NOT NULL,
unique(clusterID, runID, pop)
ON CONFLICT REPLACE
);""",
    "SeqID": """
CREATE TABLE SeqID(
clusterID	TEXT	NOT NULL,
runID	TEXT	NOT NULL,
pop	TEXT	NOT NULL,
value	REAL	NOT NULL,
unique(clusterID, runID, pop)
ON CONFLICT REPLACE
);""",
    "dN_dS": """
CREATE TABLE dN_dS(
clusterID	TEXT	NOT NULL,
runID	TEXT	NOT NULL,
pop	TEXT	NOT NULL,
ds	REAL,
dn	REAL,
ds_dn	REAL,
dn_ds	REAL,
unique(clusterID, runID, pop)
ON CONFLICT REPLACE
);""",
}


def fst_rows(df: pd.DataFrame, run_id: str, regex: str) -> List[tuple]:
    rows = []
    for r in df.itertuples(index=False):
        file, pop, fst, low, high = r[:5]
        values = [to_float(v) for v in (fst, low, high)]
        if None in values:
            logger.warning("%s %s: missing Fst value. Skipping.", file, pop)
            continue
        rows.append((cluster_id(file, regex), run_id, pop, *values))
    return rows


def seqid_rows(df: pd.DataFrame, run_id: str, stat: str = "mean", pdist: bool = False) -> List[tuple]:
    rows = []
    for cluster, pop, value in zip(df["cluster"], df["population"], df[stat]):
        value = to_float(value)
        if value is None:
            logger.warning("%s %s: no %s value. Skipping.", cluster, pop, stat)
            continue
        if pdist:  # converting to seqID
            value = 100 - value
        if not 0 <= value <= 100:
            raise ValueError(f"{value} is not in range 0-100 ({cluster}, {pop})")
        rows.append((cluster, run_id, pop, value))
    return rows


def dnds_rows(df: pd.DataFrame, run_id: str, regex: str) -> List[tuple]:
    return [(cluster_id(r[0], regex), run_id, f"{r[1]}__{r[2]}", *(to_float(v) for v in r[3:7]))
            for r in df.itertuples(index=False)]


def load_gene_info(lines: Iterable[str]) -> Dict[str, Dict[str, int]]:
    """clusterID (column 14) -> taxon ID (column 3) -> number of genes"""
    info = defaultdict(lambda: defaultdict(int))
    for line in lines:
        line = line.rstrip("\r\n")
        if not line.strip():
            continue
        l = line.split("\t")
        if len(l) < 14 or not l[13].isdigit():
            raise ValueError("no clusterID column (column 14) in geneInfo table!")
        info[l[13]][l[2]] += 1
    return info


def cluster_meta_rows(info: Dict[str, Dict[str, int]], run_id: str, core: int) -> List[tuple]:
    """'core' when exactly --core taxa carry a single copy of the cluster."""
    rows = []
    for cluster in sorted(info, key=int):
        n_single = sum(1 for n in info[cluster].values() if n == 1)
        rows.append((cluster, run_id, "core" if n_single == core else "variable"))
    return rows


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Make and load the PopGen-db database.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress to STDERR")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("make", help="Create the database")
    p.add_argument("database")
    p.add_argument("-r", "--replace", action="store_true", help="Replace an existing database")

    for name, help_text in (("load-fst", "arlecore-fst-batch table"),
                            ("load-seqid", "seqid-by-pop table"),
                            ("load-dnds", "snap-batch *_by-group.txt table")):
        p = sub.add_parser(name, help=f"Load a {help_text}")
        p.add_argument("table", nargs="?", default="-", help=f"{help_text} [STDIN]")
        p.add_argument("-d", "--database", required=True)
        p.add_argument("-r", "--run-id", required=True)
        if name == "load-seqid":
            p.add_argument("-s", "--stat", default="mean", choices=STAT_COLUMNS[:-1],
                           help="Summary statistic to load [%(default)s]")
            p.add_argument("-p", "--pdist", action="store_true", help="Values are p-distances (100 - value)")
        else:
            p.add_argument("-x", "--regex", default=DEFAULT_CLUSTER_REGEX,
                           help="Regex removed from file names to get the cluster ID ['%(default)s']")

    p = sub.add_parser("load-cluster-info", help="Load ITEP geneInfo from STDIN")
    p.add_argument("-d", "--database", required=True)
    p.add_argument("-r", "--run-id", required=True)
    p.add_argument("-c", "--core", type=int, required=True, help="Number of taxa in a core cluster")

    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        if args.command == "make":
            make_db(args.database, SCHEMA, args.replace)
            return 0

        if args.command == "load-fst":
            table, columns = "Fst", ["clusterID", "runID", "pop", "value", "ci_low", "ci_high"]
            rows = fst_rows(read_input_table(args.table, FST_COLUMNS, "Fst table"), args.run_id, args.regex)
        elif args.command == "load-seqid":
            table, columns = "SeqID", ["clusterID", "runID", "pop", "value"]
            df = read_input_table(args.table, ["cluster", "population", args.stat], "sequence ID table")
            rows = seqid_rows(df, args.run_id, args.stat, args.pdist)
        elif args.command == "load-dnds":
            table, columns = "dN_dS", ["clusterID", "runID", "pop", "ds", "dn", "ds_dn", "dn_ds"]
            rows = dnds_rows(read_input_table(args.table, BY_GROUP_COLUMNS, "dN/dS table"), args.run_id, args.regex)
        else:
            table, columns = "Cluster_meta", ["clusterID", "runID", "core_var"]
            rows = cluster_meta_rows(load_gene_info(sys.stdin), args.run_id, args.core)
            n_core = sum(1 for r in rows if r[2] == "core")
            print(f" \tNumber of 'core' entries: {n_core}", file=sys.stderr)
            print(f" \tNumber of 'variable' entries: {len(rows) - n_core}", file=sys.stderr)

        conn = connect(args.database, [table])
        count = insert_rows(conn, table, columns, rows)
        conn.close()
    except (ValueError, OSError, sqlite3.Error) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    report(DB_NAME, table, count)
    return 0


if __name__ == "__main__":
    sys.exit(main())
