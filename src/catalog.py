"""
MiGeL catalog source: download and parse the BAG "Mittel- und Gegenständeliste" XLSX.

Workbook layout (one sheet per language, same row structure):
    sheet 0 = DE, sheet 1 = FR, sheet 2 = IT
    row 0   = header
    col B-G = category hierarchy levels (only filled on category header rows)
    col H   = Positions-Nr.   (empty on category header rows)
    col J   = Bezeichnung     (multi-line; first line is the position title)
    col K   = Limitation

The German sheet defines which positions exist. French and Italian rows are
attached by position number; a position missing from FR/IT simply has no
keywords in that language.
"""

import logging
from typing import Dict, List, Mapping, Tuple

import pandas as pd
import requests

from matcher import DEFAULT_CONFIG, LANGUAGES, CatalogItem, Language, MatchConfig, build_catalog_item

logger = logging.getLogger(__name__)

MIGEL_URL = (
    "https://www.bag.admin.ch/dam/de/sd-web/77j5rwUTzbkq/"
    "Mittel-%20und%20Gegenst%C3%A4ndeliste%20per%2001.01.2026%20in%20Excel-Format.xlsx"
)
MIGEL_FILE = "migel.xlsx"
USER_AGENT = "migel-mapper/0.1"

COL_POSITION = 7      # H
COL_BEZEICHNUNG = 9   # J
COL_LIMITATION = 10   # K


class CatalogError(Exception):
    """The MiGeL workbook could not be downloaded or has an unexpected structure."""


def download_catalog(url: str = MIGEL_URL, dest: str = MIGEL_FILE, session=None) -> str:
    """Download the MiGeL XLSX to `dest` and return the path."""
    session = session or requests.Session()
    logger.info("Downloading MiGeL XLSX...")
    resp = session.get(url, headers={'User-Agent': USER_AGENT})
    if not resp.ok:
        raise CatalogError(f"Failed to download MiGeL XLSX: HTTP {resp.status_code}")
    with open(dest, 'wb') as f:
        f.write(resp.content)
    logger.info("MiGeL XLSX saved (%d bytes)", len(resp.content))
    return dest


def read_catalog_sheets(file) -> Dict[Language, pd.DataFrame]:
    """Read the first three sheets of the workbook as raw string frames (no header)."""
    sheets = pd.read_excel(file, sheet_name=None, header=None, dtype=str)
    if not sheets:
        raise CatalogError("MiGeL workbook contains no sheets")
    frames = list(sheets.values())
    return {lang: frames[i] for i, lang in enumerate(LANGUAGES) if i < len(frames)}


def _cell_str(row, idx: int) -> str:
    if idx >= len(row):
        return ''
    val = row.iloc[idx]
    if val is None or pd.isna(val):
        return ''
    return str(val).strip()


def _sheet_rows(df: pd.DataFrame):
    """(position, bezeichnung, limitation) for every non-header row."""
    for i in range(1, len(df)):
        row = df.iloc[i]
        yield _cell_str(row, COL_POSITION), _cell_str(row, COL_BEZEICHNUNG), _cell_str(row, COL_LIMITATION)


def parse_catalog(
    sheets: Mapping[Language, pd.DataFrame],
    config: MatchConfig = DEFAULT_CONFIG,
) -> List[CatalogItem]:
    """
    Build CatalogItems from the language sheets.

    Rows without a position number are category headers and are skipped.
    """
    if Language.DE not in sheets:
        raise CatalogError("MiGeL workbook has no German sheet")
    df_de = sheets[Language.DE]
    if df_de.shape[1] <= COL_POSITION:
        raise CatalogError(
            f"German sheet has {df_de.shape[1]} columns; expected Positions-Nr. in column H"
        )

    texts: Dict[str, Dict[Language, Tuple[str, str]]] = {}
    order: List[str] = []
    for pos, bezeichnung, limitation in _sheet_rows(df_de):
        if not pos:
            continue
        if pos in texts:
            logger.warning("Duplicate MiGeL position %s in German sheet, keeping the first row", pos)
            continue
        texts[pos] = {Language.DE: (bezeichnung, limitation)}
        order.append(pos)

    for lang in (Language.FR, Language.IT):
        df = sheets.get(lang)
        if df is None:
            logger.warning("MiGeL workbook has no %s sheet", lang.value)
            continue
        if df.shape[1] <= COL_POSITION:
            logger.warning("%s sheet has no Positions-Nr. column, skipping", lang.value)
            continue
        for pos, bezeichnung, limitation in _sheet_rows(df):
            if pos in texts and lang not in texts[pos]:
                texts[pos][lang] = (bezeichnung, limitation)

    items = [build_catalog_item(pos, texts[pos], config) for pos in order]
    logger.info("Found %d MiGeL items with position numbers", len(items))
    return items


def load_catalog(file, config: MatchConfig = DEFAULT_CONFIG) -> List[CatalogItem]:
    """Read + parse a MiGeL workbook (path or file-like)."""
    return parse_catalog(read_catalog_sheets(file), config)
