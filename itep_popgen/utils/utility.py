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

"""Shared helpers for the ITEP_PopGen command-line tools."""

import concurrent.futures
import contextlib
import logging
import multiprocessing
import os
import re
import shutil
import statistics
import subprocess
import sys
import tempfile
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

NA = "NA"
LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'
STAT_COLUMNS = ["min", "q1", "mean", "median", "q3", "max", "N"]
POP_STAT_COLUMNS = ["file", "cluster", "population"] + STAT_COLUMNS


def setup_logging(verbose: bool = False) -> None:
    """Send log records to STDERR; tables stay on STDOUT."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )


# =============================================================================
# Sequence and table I/O
# =============================================================================

def read_fasta(inf, aformat="FIRST", duplicate="replace"):
    """Load sequences from a FASTA file into a name->sequence dictionary."""
    data = {}
    name = None
    with open(inf, "r") as fa:
        for line in fa:
            if line.startswith("#") or not line.strip():
                continue
            if line.startswith(">"):
                if aformat.upper() in ["FIRST", "WORD"]:
                    name = line[1:].split()[0] if line[1:].strip() else ""
                else:
                    name = line[1:].strip()
                if name in data:
                    if duplicate.lower() in ["append", "a"]:  # keep adding to existing sequence
                        pass
                    elif duplicate.lower() in ["replace", "r"]:  # reset sequence to empty
                        data[name] = ""
                    elif duplicate.lower() in ["separate", "s"]:  # add underscore+number to end of name
                        match = re.search(r"_(\d+)$", name)
                        n = int(match.group(1)) + 1 if match else 2
                        base = name[:match.start()] if match else name
                        name = f"{base}_{n}"
                        while name in data:
                            n += 1
                            name = f"{base}_{n}"
                        data[name] = ""
                else:
                    data[name] = ""
            else:
                if name is None:
                    raise ValueError(f"{inf}: sequence data found before the first FASTA header")
                data[name] = data[name] + line.strip()
    return data


def read_table(path, min_columns: int = 1, max_columns: Optional[int] = None,
               label: str = "table") -> List[List[str]]:
    """
    Read a tab-delimited table, skipping blank lines.

    Args:
        path: file path
        min_columns: fewest fields allowed per line
        max_columns: most fields allowed per line (None = unlimited)
        label: name used in error messages

    Returns:
        List of rows (lists of stripped fields)
    """
    rows = []
    with open(check_file_io(path, label)) as fh:
        for lineno, line in enumerate(fh, 1):
            line = line.rstrip("\r\n")
            if not line.strip():
                continue
            fields = [f.strip() for f in line.split("\t")]
            if len(fields) < min_columns or (max_columns is not None and len(fields) > max_columns):
                expect = min_columns if min_columns == max_columns else f"at least {min_columns}"
                raise ValueError(f"{label} '{path}' line {lineno}: expected {expect} tab-delimited columns, "
                                 f"found {len(fields)}")
            rows.append(fields)
    return rows


def load_population_table(path) -> Dict[str, str]:
    """taxon<TAB>population -> {taxon: population}"""
    return {taxon: pop for taxon, pop in read_table(path, 2, 2, label="population file")}


def load_group_table(path) -> Dict[str, str]:
    """taxon<TAB>group[<TAB>...] -> {taxon: group}; extra columns are ignored."""
    return {row[0]: row[1] for row in read_table(path, 2, label="group file")}


def load_file_table(path) -> List[Tuple[str, str]]:
    """file<TAB>cluster -> [(file, cluster), ...] in input order."""
    return [(f, c) for f, c in read_table(path, 2, 2, label="file table")]


def load_list(path, label: str = "list") -> List[str]:
    """One entry per line; duplicates are an error."""
    entries = [row[0] for row in read_table(path, 1, 1, label=label)]
    seen = set()
    for entry in entries:
        if entry in seen:
            raise ValueError(f"'{entry}' found multiple times in {label} '{path}'")
        seen.add(entry)
    return entries


def check_file_io(path, label: str = "file") -> Path:
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Cannot find {label}: {path}")
    return path


def replace_extension(name, ext: str) -> str:
    """foo/bar.fasta, '.dist' -> foo/bar.dist"""
    return re.sub(r"\.[^./]+$", "", str(name)) + ext


def taxon_name(seq_name: str, delimiter: Optional[str] = None) -> str:
    """Taxon portion of a sequence name (text before the first delimiter)."""
    if not delimiter:
        return seq_name
    return seq_name.split(delimiter)[0]


def write_table(rows: Iterable[Sequence], columns: Sequence[str], output=None) -> None:
    """Write rows as a tab-delimited table with a header to a path or STDOUT."""
    df = pd.DataFrame(list(rows), columns=list(columns))
    df.to_csv(output if output is not None else sys.stdout, sep="\t", index=False,
              na_rep=NA, lineterminator="\n")


# =============================================================================
# Descriptive statistics
# =============================================================================

def format_value(value) -> str:
    """Render numbers compactly (integral floats without a decimal point)."""
    if value is None:
        return NA
    if isinstance(value, str):
        return value
    if isinstance(value, (float, np.floating)):
        if value != value:
            return NA
        if float(value).is_integer():
            return str(int(value))
        return f"{float(value):.15g}"
    return str(value)


@dataclass
class PopulationStatistic:
    """Summary of the values gathered for one population (or population pair)."""
    min: object = NA
    q1: object = NA
    mean: object = NA
    median: object = NA
    q3: object = NA
    max: object = NA
    N: int = 0
    stdev: object = NA

    def row(self) -> List[str]:
        return [format_value(v) for v in (self.min, self.q1, self.mean, self.median,
                                          self.q3, self.max, self.N)]


def describe(values: Iterable[float]) -> PopulationStatistic:
    """
    Descriptive statistics for a set of values.

    Quartiles use the nearest-rank definition (the ceil(n*p)-th smallest value).
    Standard deviation is the sample stdev and needs at least 2 values.
    """
    vals = [float(v) for v in values]
    if not vals:
        return PopulationStatistic()
    q1, q3 = np.percentile(np.asarray(vals), [25, 75], method="inverted_cdf")
    return PopulationStatistic(
        min=min(vals),
        q1=float(q1),
        mean=statistics.mean(vals),
        median=statistics.median(vals),
        q3=float(q3),
        max=max(vals),
        N=len(vals),
        stdev=statistics.stdev(vals) if len(vals) > 1 else NA,
    )


def population_pair(pop1: str, pop2: str) -> str:
    """Order-independent key for a pair of populations."""
    return "__".join(sorted([pop1, pop2]))


def sort_population_keys(keys: Iterable[str]) -> List[str]:
    """Population keys sorted with 'total' last."""
    keys = set(keys)
    ordered = sorted(k for k in keys if k != "total")
    if "total" in keys:
        ordered.append("total")
    return ordered


def summarize_by_population(values: Iterable[Tuple[str, str, float]]) -> Dict[str, PopulationStatistic]:
    """(pop1, pop2, value) triples -> statistics per population pair plus 'total'."""
    groups = defaultdict(list)
    for pop1, pop2, value in values:
        groups[population_pair(pop1, pop2)].append(value)
        groups["total"].append(value)
    return {pop: describe(vals) for pop, vals in groups.items()}


def population_rows(file: str, cluster: str, stats: Dict[str, PopulationStatistic]) -> List[List[str]]:
    return [[file, cluster, pop] + stats[pop].row() for pop in sort_population_keys(stats)]


# =============================================================================
# External commands
# =============================================================================

class CommandError(RuntimeError):
    """An external program could not be run or exited non-zero."""


@dataclass
class CommandResult:
    args: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""


def run_command(args: Sequence, cwd=None, check: bool = True, stdin: Optional[str] = None) -> CommandResult:
    """
    Run an external program without a shell.

    Args:
        args: program followed by its arguments
        cwd: working directory for the call
        check: raise CommandError on a non-zero exit status
        stdin: text passed on standard input

    Returns:
        CommandResult with the captured stdout/stderr
    """
    cmd = [str(a) for a in args]
    logger.info("Running: %s", " ".join(cmd))
    try:
        result = subprocess.run(cmd, cwd=cwd, capture_output=True, text=True, input=stdin)
    except FileNotFoundError as e:
        raise CommandError(f"'{cmd[0]}' not found. Is it installed and in your $PATH?") from e
    except PermissionError as e:
        raise CommandError(f"'{cmd[0]}' is not executable") from e

    if check and result.returncode != 0:
        raise CommandError(f"{Path(cmd[0]).name} failed (exit {result.returncode}): "
                           f"{result.stderr.strip() or result.stdout.strip()[-500:]}")
    return CommandResult(cmd, result.returncode, result.stdout, result.stderr)


def run_mothur(command: str, cwd=None, binary: str = "mothur") -> CommandResult:
    """Run one mothur command in batch mode; mothur reports errors on stdout, not the exit code."""
    result = run_command([binary, f"#{command}"], cwd=cwd)
    errors = [line.strip() for line in result.stdout.splitlines() if "ERROR" in line]
    if errors:
        raise CommandError(f"mothur failed on '{command}': {errors[0]}")
    return result


def require_executables(names: Iterable[str]) -> None:
    missing = [n for n in names if shutil.which(n) is None]
    if missing:
        raise CommandError(f"Required executable(s) not found in $PATH: {', '.join(missing)}")


@contextlib.contextmanager
def working_directory(keep_as=None, prefix: str = "itep_popgen_"):
    """Temporary directory for one worker; kept at 'keep_as' when given."""
    if keep_as:
        path = Path(keep_as)
        path.mkdir(parents=True, exist_ok=True)
        yield path
    else:
        with tempfile.TemporaryDirectory(prefix=prefix) as tmp:
            yield Path(tmp)


# =============================================================================
# Worker pool
# =============================================================================

def autodetect_workers(n_tasks: int, cap: int = 8) -> int:
    n_cpu = os.cpu_count() or multiprocessing.cpu_count() or 1
    return max(1, min(n_cpu // 2 if n_cpu > 1 else 1, cap, n_tasks))


def run_batch(func: Callable, items: Iterable, workers: int = 1) -> list:
    """
    Apply func to every item, in worker processes when workers > 1.

    Results come back in input order and only once every task has finished,
    so merging them afterwards is independent of the worker count.
    workers=0 picks a worker count from the CPU count.
    """
    items = list(items)
    if not items:
        return []
    if workers == 0:
        workers = autodetect_workers(len(items))
    if workers <= 1 or len(items) == 1:
        return [func(item) for item in items]

    logger.info("Running %d tasks on %d workers", len(items), min(workers, len(items)))
    with concurrent.futures.ProcessPoolExecutor(max_workers=min(workers, len(items))) as ex:
        return list(ex.map(func, items))
