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
Run Mowgli on a directory of gene trees.

By default Mowgli is called on every leaf rooting of each gene tree. A
donor-receiver file must be provided; it specifies the clades that Mowgli sums
the transfers to/from. Gene trees must be binary.

Example:
    mowgli-batch -s species.nwk -g gene_trees/ -x donor_receiver.txt > Mowgli_summary.txt
"""

import argparse
import functools
import logging
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..utils.trees import Tree
from ..utils.utility import (NA, CommandError, check_file_io, run_batch, run_command,
                             setup_logging, working_directory, write_table)

logger = logging.getLogger(__name__)

TREE_COLUMNS = ["species_tree", "rooting", "dup_cost", "trans_cost", "loss_cost",
                "final_Cost", "number_of_Climbs", "number_of_bad_NNI", "number_of_tried_NNI"]
DR_COLUMNS = ["Donor", "Receiver", "Tran", "TranLoss"]
COLUMNS = ["gene_tree", "gene_tree_rooted"] + TREE_COLUMNS + DR_COLUMNS

STATISTIC_RE = re.compile(r" \w.+:\d+$")


@dataclass(frozen=True)
class MowgliConfig:
    species_tree: str
    donor_receiver: str
    dup_cost: int = 2
    trans_cost: int = 3
    loss_cost: int = 1
    boot_cutoff: int = 80
    binary: str = "Mowgli"


def parse_costs(text: str) -> List[Dict[str, str]]:
    """Donor/Receiver/Tran/TranLoss rows of a costs.mpr file."""
    rows = []
    lines = iter(text.splitlines())
    for line in lines:
        if not line.startswith("#Donor\tReceiver"):
            continue
        for line in lines:
            if not line.strip():
                break
            fields = [f if f.strip() else None for f in line.split("\t")]
            fields += [None] * (4 - len(fields))
            donor = fields[0] if fields[0] is not None else NA
            receiver = fields[1] if fields[1] is not None else NA
            if NA in (donor, receiver):  # both NA if 1 NA
                donor = receiver = NA
            rows.append({"Donor": donor, "Receiver": receiver,
                         "Tran": fields[2] if fields[2] is not None else "0",
                         "TranLoss": fields[3] if fields[3] is not None else "0"})
    return rows


def parse_statistics(text: str) -> Dict[str, str]:
    """'  final Cost :12' -> {'final_Cost': '12'}"""
    stats = {}
    for line in text.splitlines():
        if STATISTIC_RE.search(line):
            key, value = re.split(r" +:", line.strip(), maxsplit=1)
            stats[key.replace(" ", "_")] = value.strip()
    return stats


def rooted_name(gene_file: str, rooting: int) -> str:
    return re.sub(r"\.[^.]+$|$", f"_r{rooting}.nwk", gene_file, count=1)


def call_mowgli(job: Tuple[str, int, Optional[str]], config: MowgliConfig) -> List[List[str]]:
    """
    Run Mowgli on one rooting of one gene tree.

    Args:
        job: (gene tree path, rooting number, leaf to root on or None to use as-is)
        config: costs, input files and binary

    Returns:
        Output table rows (one per donor-receiver pair)
    """
    gene_path, rooting, leaf = job
    gene_file = Path(gene_path).name
    with working_directory(prefix="mowgli_") as tmp:
        if leaf is None:
            rooted = gene_file
            tree_in = Path(gene_path).resolve()
        else:
            rooted = rooted_name(gene_file, rooting)
            tree_in = tmp / rooted
            Tree.read(gene_path).reroot(leaf).write(tree_in)

        outdir = tmp / "Mowgli_output"
        logger.info("Calling Mowgli on: '%s'", rooted)
        run_command([config.binary,
                     "-s", Path(config.species_tree).resolve(),
                     "-g", tree_in,
                     "-d", config.dup_cost, "-t", config.trans_cost, "-l", config.loss_cost,
                     "-n", 1, "-T", config.boot_cutoff,
                     "-f", Path(config.donor_receiver).resolve(),
                     "-o", outdir], cwd=tmp)

        try:
            costs = parse_costs((outdir / "costs.mpr").read_text())
            stats = parse_statistics((outdir / "statistics.mpr").read_text())
        except FileNotFoundError as e:
            raise CommandError(f"Mowgli produced no output for '{rooted}': {e.filename}") from e

    values = {"species_tree": config.species_tree, "rooting": rooting,
              "dup_cost": config.dup_cost, "trans_cost": config.trans_cost,
              "loss_cost": config.loss_cost, **stats}
    tree_part = [str(values.get(c, NA)) for c in TREE_COLUMNS]
    if not costs:
        costs = [{c: NA for c in DR_COLUMNS}]
    return [[gene_file, rooted] + tree_part + [dr[c] for c in DR_COLUMNS] for dr in costs]


def get_gene_tree_list(gene_dir) -> List[Path]:
    gene_dir = Path(gene_dir)
    if not gene_dir.is_dir():
        raise FileNotFoundError(f"Cannot find gene tree directory: {gene_dir}")
    files = sorted(p for p in gene_dir.iterdir() if p.is_file() and not p.name.startswith("."))
    if not files:
        raise ValueError(f"No gene trees found in '{gene_dir}'!")
    return files


def make_jobs(gene_files: List[Path], reroot: bool = True) -> List[Tuple[str, int, Optional[str]]]:
    jobs = []
    for gene_file in gene_files:
        if not reroot:
            jobs.append((str(gene_file), 1, None))
            continue
        leaves = Tree.read(gene_file).leaf_names()
        logger.info("%s: number of possible leaf rootings: %d", gene_file.name, len(leaves))
        jobs.extend((str(gene_file), i, leaf) for i, leaf in enumerate(leaves, 1))
    return jobs


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Call Mowgli on multiple gene trees (all leaf rootings by default).",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("-s", "--species", required=True, help="Species tree (newick; Mowgli format)")
    parser.add_argument("-g", "--gene-dir", required=True, help="Directory of gene trees (newick)")
    parser.add_argument("-x", "--donor-receiver", required=True, help="Donor-receiver file (Mowgli format)")
    parser.add_argument("--no-reroot", action="store_true", help="Use gene trees as rooted; no rerooting")
    parser.add_argument("-D", "--duplication", type=int, default=2, help="Duplication cost [%(default)s]")
    parser.add_argument("-T", "--transfer", type=int, default=3, help="Transfer cost [%(default)s]")
    parser.add_argument("-L", "--loss", type=int, default=1, help="Loss cost [%(default)s]")
    parser.add_argument("-b", "--boot", type=int, default=80,
                        help="Bootstrap cutoff for performing NNI by Mowgli [%(default)s]")
    parser.add_argument("-f", "--fork", type=int, default=1, help="Number of parallel Mowgli calls (0 = auto) [%(default)s]")
    parser.add_argument("--mowgli-binary", default="Mowgli", help="Mowgli executable [%(default)s]")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress to STDERR")
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        check_file_io(args.species, "species tree")
        check_file_io(args.donor_receiver, "donor-receiver file")
        gene_files = get_gene_tree_list(args.gene_dir)
        logger.warning("Gene trees must be binary!")

        config = MowgliConfig(args.species, args.donor_receiver, args.duplication, args.transfer,
                              args.loss, args.boot, args.mowgli_binary)
        jobs = make_jobs(gene_files, reroot=not args.no_reroot)
        results = run_batch(functools.partial(call_mowgli, config=config), jobs, args.fork)
    except (ValueError, OSError, KeyError, CommandError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    write_table((row for rows in results for row in rows), COLUMNS)
    return 0


if __name__ == "__main__":
    sys.exit(main())
