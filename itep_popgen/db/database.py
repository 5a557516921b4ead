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

"""SQLite helpers shared by the rdtl-db and PopGen-db tools."""

import logging
import re
import sqlite3
import sys
from pathlib import Path
from typing import Dict, Iterable, Optional, Sequence

import pandas as pd

from ..utils.utility import NA, check_file_io

logger = logging.getLogger(__name__)

DEFAULT_CLUSTER_REGEX = r".+_|\.f[astn]*a$"


def make_db(db_file, schema: Dict[str, str], replace: bool = False) -> None:
    """Create a database with one table per schema entry."""
    db_file = Path(db_file)
    if db_file.exists():
        if not replace:
            raise FileExistsError(f"{db_file} already exists! Use '--replace' to replace")
        db_file.unlink()
    with sqlite3.connect(db_file) as conn:
        for table, sql in schema.items():
            conn.executescript(f"DROP TABLE IF EXISTS {table};\n{sql}")
    conn.close()
    print("...sqlite3 database tables created", file=sys.stderr)


def connect(db_file, required_tables: Iterable[str] = ()) -> sqlite3.Connection:
    conn = sqlite3.connect(check_file_io(db_file, "database"))
    tables = {r[0].lower() for r in conn.execute("SELECT tbl_name FROM sqlite_master WHERE type='table'")}
    for table in required_tables:
        if table.lower() not in tables:
            conn.close()
            raise ValueError(f"'{table}' table not found in {db_file}!")
    return conn


def insert_rows(conn: sqlite3.Connection, table: str, columns: Sequence[str], rows: Iterable[Sequence],
                commit: bool = True) -> int:
    """
    Insert rows; returns the number inserted.

    With commit=False the rows join the caller's open transaction, so a
    multi-table load can be rolled back as a whole.
    """
    sql = f"INSERT INTO {table}({', '.join(columns)}) VALUES({', '.join('?' * len(columns))})"
    if commit:
        with conn:
            return insert_rows(conn, table, columns, rows, commit=False)
    count = 0
    for row in rows:
        conn.execute(sql, tuple(row))
        count += 1
    return count


def report(db_name: str, table: str, count: int) -> None:
    print(f" Number of entries added/updated in {db_name} {table} table: {count}", file=sys.stderr)


def read_input_table(path, required: Sequence[str], label: str = "table") -> pd.DataFrame:
    """Tab-delimited table with a header, from a file or STDIN ('-')."""
    source = sys.stdin if path in (None, "-") else check_file_io(path, label)
    df = pd.read_csv(source, sep="\t", dtype=str, keep_default_na=False)
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"{label} is missing column(s): {', '.join(missing)}")
    return df


def cluster_id(value: str, regex: str = DEFAULT_CLUSTER_REGEX) -> str:
    """Cluster ID from a file name by removing everything the regex matches."""
    return re.sub(regex, "", value)


def to_float(value: str) -> Optional[float]:
    """Float, or None for NA/empty values."""
    if value is None or value.strip() == "" or value.strip().upper() == NA:
        return None
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"'{value}' is not a number") from None
