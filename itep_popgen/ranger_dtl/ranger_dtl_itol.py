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
Summarise a parsed Ranger-DTL node table as ITOL annotation files.

  <prefix>_transfers.meta   donor, recipient, heat-map colour (transfer frequency)
  <prefix>_Dup-Loss.txt     duplications per species tree node (ITOL LABELS/COLORS table)

Transfers predicted in fewer than --transfer (fraction) of the gene trees are dropped.
"""

import argparse
import logging
import sys
from collections import Counter
from typing import List, Tuple

import pandas as pd

from ..utils.utility import check_file_io, setup_logging
from .ranger_dtl_parse import NODE_COLUMNS

logger = logging.getLogger(__name__)

HEATMAP_COLORS = ["#CCFFFF", "#99FFFF", "#33FFFF", "#0099CC", "#3366FF",
                  "#0000FF", "#0000CC", "#000099", "#000066", "#000033"]


def load_node_table(path) -> pd.DataFrame:
    df = pd.read_csv(check_file_io(path, "node table"), sep="\t", dtype=str, keep_default_na=False)
    missing = [c for c in NODE_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"{path} is missing column(s): {', '.join(missing)}. "
                         f"Is it a ranger-dtl-parse *_node.txt table?")
    return df


def count_events(df: pd.DataFrame) -> Tuple[Counter, Counter, int]:
    """(donor, recipient) -> N transfers; species node -> N duplications; N trees"""
    category = df["category"].str.lower()
    transfers = Counter(zip(df.loc[category == "transfer", "species_node"],
                            df.loc[category == "transfer", "recipient"]))
    duplications = Counter(df.loc[category == "duplication", "species_node"])
    return transfers, duplications, df["tree_id"].nunique()


def apply_transfer_cutoff(transfers: Counter, cutoff: float, n_trees: int) -> Counter:
    kept = Counter({k: v for k, v in transfers.items() if v / n_trees >= cutoff})
    logger.info("Number of trees: %d", n_trees)
    logger.info("Transfers (summed by node): %d; below cutoff: %d; remaining: %d",
                len(transfers), len(transfers) - len(kept), len(kept))
    return kept


def heatmap_bins(low: int, high: int, n: int = 10) -> List[Tuple[int, str]]:
    """Lower bounds (rounded) and colours of up to n-1 equal-width bins spanning low..high."""
    step = (high - low) / n
    bins = []
    for i in range(n - 1):
        value = low + i * step
        if value > high:
            break
        bins.append((int(value + 0.5), HEATMAP_COLORS[i]))
        if step == 0:
            break
    return bins


def transfer_rows(transfers: Counter) -> List[List[str]]:
    bins = heatmap_bins(min(transfers.values()), max(transfers.values()))
    rows = []
    for (donor, recipient), count in sorted(transfers.items()):
        colour = [c for bound, c in bins if count >= bound][-1]
        rows.append([donor, recipient, colour])
    return rows


def dup_rows(duplications: Counter) -> List[List[str]]:
    rows = [["LABELS", "duplications"], ["COLORS", "#FF0000"]]
    dup_max = max(duplications.values(), default=0)
    for node, count in sorted(duplications.items()):
        if "|" in node:
            rows.append([node, f"R{int(count / dup_max * 100)}", str(count)])
        else:
            rows.append([node, str(count)])
    return rows


def write_rows(rows, path) -> None:
    with open(path, "w") as fh:
        for row in rows:
            fh.write("\t".join(row) + "\n")


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Make ITOL transfer and duplication tables from a ranger-dtl-parse node table.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("node_table", help="*_node.txt table from ranger-dtl-parse")
    parser.add_argument("-p", "--prefix", default="ranger-dtl_ITOL", help="Output file prefix [%(default)s]")
    parser.add_argument("-t", "--transfer", type=float, default=0.025,
                        help="Minimum fraction of trees predicting a transfer [%(default)s]")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress to STDERR")
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        df = load_node_table(args.node_table)
        if df.empty:
            raise ValueError(f"No reconciliation rows in {args.node_table}")
        transfers, duplications, n_trees = count_events(df)
        transfers = apply_transfer_cutoff(transfers, args.transfer, n_trees)

        if transfers:
            write_rows(transfer_rows(transfers), f"{args.prefix}_transfers.meta")
        else:
            logger.warning("No transfers above cutoff! No transfer ITOL table written!")
        write_rows(dup_rows(duplications), f"{args.prefix}_Dup-Loss.txt")
    except (ValueError, OSError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
