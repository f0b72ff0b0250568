"""
Output writers for flattened swissdamed rows: CSV, SQLite, CSV diff and scp deploy.
"""

import logging
import os
import sqlite3
import subprocess
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Optional

import pandas as pd

from udi import TRADE_NAME_PREFIX, UDI_CODE_COLUMN

logger = logging.getLogger(__name__)

DEFAULT_TABLE = 'swissdamed'
DEFAULT_SCP_TARGET = "zdavatz@65.109.137.20:/var/www/pillbox.oddb.org/swissdamed.db"
DIFF_DIR = 'diff'


class DiffError(Exception):
    """Two CSV exports cannot be compared."""


class DeployError(Exception):
    """scp upload failed."""


def date_stamp(day: Optional[date] = None) -> str:
    return (day or date.today()).strftime('%d.%m.%Y')


def output_filename(ext: str, prefix: str = 'swissdamed', day: Optional[date] = None) -> str:
    """e.g. swissdamed_19.10.2026.csv"""
    return f"{prefix}_{date_stamp(day)}.{ext}"


# ---------------------------------------------------------------------------
# CSV / SQLite
# ---------------------------------------------------------------------------

def write_csv(df: pd.DataFrame, filename) -> None:
    """CSV with a UTF-8 BOM so Excel opens umlauts correctly."""
    df.to_csv(filename, index=False, encoding='utf-8-sig')


def _quote(name: str) -> str:
    return '"' + str(name).replace('"', '""') + '"'


def write_sqlite(df: pd.DataFrame, filename, table: str = DEFAULT_TABLE) -> None:
    """
    Write all rows into a fresh SQLite file (existing file is replaced).

    Every column is TEXT. udiDiCode and the tradeName_* columns get an index
    since those are what the lookup front-end searches on.
    """
    if os.path.exists(filename):
        os.remove(filename)

    headers = [str(c) for c in df.columns]
    conn = sqlite3.connect(filename)
    try:
        col_defs = ', '.join(f"{_quote(h)} TEXT" for h in headers)
        conn.execute(f"CREATE TABLE {_quote(table)} ({col_defs})")

        insert_sql = (
            f"INSERT INTO {_quote(table)} ({', '.join(_quote(h) for h in headers)}) "
            f"VALUES ({', '.join('?' for _ in headers)})"
        )
        rows = df.astype(object).where(df.notna(), None).values.tolist()
        with conn:
            conn.executemany(insert_sql, rows)

        indexed = [h for h in headers if h == UDI_CODE_COLUMN or h.startswith(TRADE_NAME_PREFIX)]
        for col in indexed:
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS {_quote('idx_' + col)} ON {_quote(table)}({_quote(col)})"
            )
        conn.commit()
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Diff
# ---------------------------------------------------------------------------

@dataclass
class DiffSummary:
    path: Optional[str]
    added: int = 0
    removed: int = 0
    changed: int = 0


def extract_date_from_filename(path) -> Optional[str]:
    """'swissdamed_01.02.2026.csv' -> '01.02.2026'"""
    stem = Path(path).stem
    candidate = stem.rsplit('_', 1)[-1]
    if len(candidate) == 10 and candidate.count('.') == 2:
        return candidate
    return None


def read_csv_rows(path) -> pd.DataFrame:
    """Read an export back as strings (BOM stripped, empty cells stay '')."""
    return pd.read_csv(path, dtype=str, keep_default_na=False, encoding='utf-8-sig')


def _group_rows(df: pd.DataFrame, key_col: str) -> dict:
    groups = {}
    for row in df.itertuples(index=False, name=None):
        groups.setdefault(row[df.columns.get_loc(key_col)], []).append(row)
    return groups


def diff_csv_files(old_path, new_path, out_dir: str = DIFF_DIR) -> DiffSummary:
    """
    Compare two exports keyed on udiDiCode and write the differences.

    Statuses: added (key only in new), removed (key only in old),
    changed_old / changed_new (key in both, rows differ).
    """
    df_old = read_csv_rows(old_path)
    df_new = read_csv_rows(new_path)

    if list(df_old.columns) != list(df_new.columns):
        raise DiffError("CSV files have different headers, cannot diff")
    if UDI_CODE_COLUMN not in df_old.columns:
        raise DiffError(f"Column '{UDI_CODE_COLUMN}' not found in headers")

    old_map = _group_rows(df_old, UDI_CODE_COLUMN)
    new_map = _group_rows(df_new, UDI_CODE_COLUMN)

    diff_rows = []
    for key in new_map:
        if key not in old_map:
            diff_rows.extend(('added', row) for row in new_map[key])
    for key in old_map:
        if key not in new_map:
            diff_rows.extend(('removed', row) for row in old_map[key])

    changed = 0
    for key in old_map:
        if key not in new_map:
            continue
        old_set, new_set = set(old_map[key]), set(new_map[key])
        if old_set == new_set:
            continue
        diff_rows.extend(('changed_old', row) for row in old_map[key] if row not in new_set)
        new_only = [row for row in new_map[key] if row not in old_set]
        diff_rows.extend(('changed_new', row) for row in new_only)
        changed += len(new_only)

    added = sum(1 for s, _ in diff_rows if s == 'added')
    removed = sum(1 for s, _ in diff_rows if s == 'removed')

    if not diff_rows:
        logger.info("No differences found.")
        return DiffSummary(path=None)

    old_date = extract_date_from_filename(old_path) or 'unknown'
    new_date = extract_date_from_filename(new_path) or 'unknown'
    os.makedirs(out_dir, exist_ok=True)
    out_path = os.path.join(out_dir, f"diff_swissdamed_{old_date}_{new_date}.csv")

    df_diff = pd.DataFrame(
        [(status,) + row for status, row in diff_rows],
        columns=['diff_status'] + list(df_old.columns),
    )
    write_csv(df_diff, out_path)
    logger.info("Diff written: %s (%d added, %d removed, %d changed)", out_path, added, removed, changed)
    return DiffSummary(path=out_path, added=added, removed=removed, changed=changed)


# ---------------------------------------------------------------------------
# Deploy
# ---------------------------------------------------------------------------

def deploy_file(filename, target: str = DEFAULT_SCP_TARGET) -> None:
    logger.info("Deploying %s to %s ...", filename, target)
    result = subprocess.run(['scp', str(filename), target])
    if result.returncode != 0:
        raise DeployError(f"scp failed with exit code {result.returncode}")
    logger.info("Deploy successful.")
