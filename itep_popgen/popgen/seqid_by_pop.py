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
Sequence identity summarised by population.

For each alignment in the file table, all pairwise sequence identities are
computed (mothur dist.seqs by default) and summarised per population
comparison (pop1__pop2) and in total.

Input:
    --table       file<TAB>cluster
    --population  taxon<TAB>population

Output columns (STDOUT): file cluster population min q1 mean median q3 max N
"""

import argparse
import functools
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from ..utils.alignment import Alignment
from ..utils.utility import (POP_STAT_COLUMNS, CommandError, PopulationStatistic, check_file_io,
                             load_file_table, load_population_table, population_rows,
                             replace_extension, run_batch, run_mothur, setup_logging,
                             summarize_by_population, taxon_name, working_directory, write_table)

logger = logging.getLogger(__name__)

DEFAULT_MOTHUR_CMD = "dist.seqs(fasta=?, calc=onegap, countends=T)"


@dataclass(frozen=True)
class SeqIDConfig:
    populations: Dict[str, str]
    delimiter: Optional[str] = " "
    method: str = "mothur"
    mothur_cmd: str = DEFAULT_MOTHUR_CMD
    processors: int = 1
    mothur_binary: str = "mothur"


def mothur_command(template: str, fasta: str, processors: int) -> str:
    """Fill the '?' placeholder with the fasta and add the processor count."""
    return template.replace("?", fasta).replace(")", f", processors={processors})", 1)


def read_mothur_dist(path) -> Iterator[Tuple[str, str, float]]:
    """Column-format mothur distances: 'seq1 seq2 distance'."""
    with open(path) as fh:
        for line in fh:
            if not line.strip():
                continue
            fields = line.split()
            if len(fields) != 3:
                raise ValueError(f"{path}: expected 'seq1 seq2 distance', got '{line.strip()}'")
            yield fields[0], fields[1], float(fields[2])


def mothur_identities(fasta, config: SeqIDConfig) -> List[Tuple[str, str, float]]:
    """Pairwise percent identities (100 - distance*100) from mothur."""
    fasta = Path(fasta).resolve()
    with working_directory(prefix="seqid_") as tmp:
        link = tmp / fasta.name
        link.symlink_to(fasta)
        run_mothur(mothur_command(config.mothur_cmd, link.name, config.processors),
                   cwd=tmp, binary=config.mothur_binary)
        dist_file = Path(replace_extension(link, ".dist"))
        if not dist_file.is_file():
            raise CommandError(f"mothur did not write a distance file for {fasta}")
        return [(a, b, 100 - d * 100) for a, b, d in read_mothur_dist(dist_file)]


def alignment_identities(fasta) -> List[Tuple[str, str, float]]:
    """Pairwise percent identities computed directly from the alignment."""
    aln = Alignment.from_fasta(fasta)
    names = aln.names()
    return [(names[i], names[j], aln.pairwise_identity(i, j))
            for i in range(len(names)) for j in range(i + 1, len(names))]


def identities_by_population(identities, populations: Dict[str, str], delimiter: Optional[str],
                             source: str = "") -> Dict[str, PopulationStatistic]:
    def pops():
        for seq1, seq2, ident in identities:
            taxa = [taxon_name(s, delimiter) for s in (seq1, seq2)]
            for taxon in taxa:
                if taxon not in populations:
                    raise ValueError(f"{source} -> {taxon} not found in population file!")
            yield populations[taxa[0]], populations[taxa[1]], ident

    return summarize_by_population(pops())


def seqid_file(job: Tuple[str, str], config: SeqIDConfig) -> List[List[str]]:
    infile, cluster = job
    check_file_io(infile, "alignment")
    logger.info("Processing: %s", infile)
    if config.method == "mothur":
        identities = mothur_identities(infile, config)
    else:
        identities = alignment_identities(infile)
    stats = identities_by_population(identities, config.populations, config.delimiter, infile)
    return population_rows(infile, cluster, stats)


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Summarise pairwise sequence identity by population.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("-t", "--table", required=True, help="File table (file<TAB>cluster)")
    parser.add_argument("-p", "--population", required=True, help="Population table (taxon<TAB>population)")
    parser.add_argument("-d", "--delimiter", default=" ",
                        help="Taxon name is the part of a sequence name before this delimiter ['%(default)s']")
    parser.add_argument("-m", "--method", choices=["mothur", "internal"], default="mothur",
                        help="Identity calculation: mothur dist.seqs or direct from the alignment [%(default)s]")
    parser.add_argument("--mothur-cmd", default=DEFAULT_MOTHUR_CMD,
                        help="mothur command; '?' is replaced by the fasta ['%(default)s']")
    parser.add_argument("--processors", type=int, default=1, help="Processors used by mothur [%(default)s]")
    parser.add_argument("-f", "--fork", type=int, default=1, help="Number of files processed in parallel (0 = auto) [%(default)s]")
    parser.add_argument("--mothur-binary", default="mothur", help="mothur executable [%(default)s]")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress to STDERR")
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        files = load_file_table(args.table)
        config = SeqIDConfig(load_population_table(args.population), args.delimiter, args.method,
                             args.mothur_cmd, args.processors, args.mothur_binary)
        results = run_batch(functools.partial(seqid_file, config=config), files, args.fork)
    except (ValueError, OSError, CommandError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    write_table((row for rows in results for row in rows), POP_STAT_COLUMNS)
    return 0


if __name__ == "__main__":
    sys.exit(main())
