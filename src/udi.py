"""
Swissdamed UDI source: download, JSON loading and flattening into rows.

Every Basic-UDI record becomes one row per udiDis entry. Top-level fields are
copied as strings, trade names are split into one column per language
(tradeName_DE, tradeName_FR, tradeName_ANY, ...).
"""

import json
import logging
import math
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd
import requests

from matcher import MatchQuery

logger = logging.getLogger(__name__)

SWISSDAMED_URL = "https://swissdamed.ch/public/udi/basic-udis"
USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/140.0.0.0 Safari/537.36"
)
DEFAULT_PAGE_SIZE = 50

TRADE_NAME_PREFIX = 'tradeName_'
UDI_CODE_COLUMN = 'udiDiCode'
BRAND_COLUMN = 'companyName'
DEVICE_COLUMN = 'deviceName'
MODEL_COLUMN = 'modelName'

# Trade-name languages with their own matching bucket; everything else goes to all three
_BUCKET_LANGS = {'DE': 'de', 'FR': 'fr', 'IT': 'it'}


class UdiSourceError(Exception):
    """The swissdamed API or a local JSON export could not be read."""


# ---------------------------------------------------------------------------
# Download / load
# ---------------------------------------------------------------------------

def download_all_pages(page_size: int = DEFAULT_PAGE_SIZE,
                       session: Optional[requests.Session] = None) -> List[dict]:
    """
    Fetch every Basic-UDI record from the public swissdamed API.

    Stops at the first empty page or the first page shorter than page_size.
    """
    session = session or requests.Session()
    session.headers.update({'User-Agent': USER_AGENT})

    all_values: List[dict] = []
    page = 0
    while True:
        logger.info("Fetching page %d ...", page)
        resp = session.post(
            SWISSDAMED_URL,
            params={'page': page, 'size': page_size},
            headers={
                'Accept': 'application/json, text/plain, */*',
                'Content-Type': 'application/json',
            },
            data='{}',
        )
        if not resp.ok:
            raise UdiSourceError(f"HTTP error: {resp.status_code} for page {page}")

        values = resp.json().get('values')
        if not isinstance(values, list):
            raise UdiSourceError("Response missing 'values' array")
        if not values:
            break

        all_values.extend(values)
        logger.info("  got %d items (total so far: %d)", len(values), len(all_values))

        if len(values) < page_size:
            break
        page += 1

    logger.info("Download complete: %d items total.", len(all_values))
    return all_values


def load_json_file(path) -> List[dict]:
    """Load a saved export: either {"values": [...]} or a top-level array."""
    with open(path, encoding='utf-8') as f:
        parsed = json.load(f)
    return parse_json_payload(parsed)


def parse_json_payload(parsed) -> List[dict]:
    if isinstance(parsed, dict) and isinstance(parsed.get('values'), list):
        return parsed['values']
    if isinstance(parsed, list):
        return parsed
    raise UdiSourceError("JSON must contain a 'values' array or be a top-level array")


# ---------------------------------------------------------------------------
# Value conversion
# ---------------------------------------------------------------------------

def sanitize(s: str) -> str:
    """Drop control characters (tab/CR/LF survive, NUL becomes a space)."""
    out = []
    for c in s:
        if c >= ' ' or c in '\t\n\r':
            out.append(c)
        elif c == '\0':
            out.append(' ')
    return ''.join(out)


def format_float(f: float) -> str:
    """10 decimals, trailing zeros and dot removed: 2.5 -> '2.5', 3.0 -> '3'."""
    if math.isnan(f) or math.isinf(f):
        return str(f)
    return f"{f:.10f}".rstrip('0').rstrip('.')


def _compact_json(val) -> str:
    return json.dumps(val, separators=(',', ':'), sort_keys=True, ensure_ascii=False)


def _scalar_to_string(val) -> str:
    # bool before int: True is an int in Python
    if isinstance(val, bool):
        return 'TRUE' if val else 'FALSE'
    if isinstance(val, int):
        return str(val)
    if isinstance(val, float):
        return format_float(val)
    return sanitize(str(val).strip())


def _first_present(obj: dict, keys: Sequence[str]):
    """Value of the first key present in obj (even if null), else None."""
    for key in keys:
        if key in obj:
            return obj[key]
    return None


def _text_and_lang(obj: dict) -> Tuple[str, str]:
    text = _first_present(obj, ('textValue', 'value', 'name'))
    lang = _first_present(obj, ('language', 'lang'))
    text = sanitize(text.strip()) if isinstance(text, str) else ''
    lang = sanitize(lang.strip()) if isinstance(lang, str) else 'ANY'
    return text, lang


def extract_array_element(elem) -> Optional[str]:
    if elem is None:
        return None
    if isinstance(elem, dict):
        text, lang = _text_and_lang(elem)
        return f"{lang}: {text}" if text else None
    if isinstance(elem, str):
        return sanitize(elem.strip()) or None
    if isinstance(elem, (bool, int, float)):
        return _scalar_to_string(elem)
    return sanitize(_compact_json(elem)) or None


def value_to_string(val) -> str:
    if val is None:
        return ''
    if isinstance(val, list):
        return ' | '.join(p for p in (extract_array_element(e) for e in val) if p is not None)
    if isinstance(val, dict):
        return sanitize(_compact_json(val))
    return _scalar_to_string(val)


def get_field(obj: dict, key: str) -> str:
    return value_to_string(obj.get(key))


# ---------------------------------------------------------------------------
# Headers and rows
# ---------------------------------------------------------------------------

def _udi_entries(item: dict) -> Optional[list]:
    udis = item.get('udiDis')
    return udis if isinstance(udis, list) else None


def _trade_name_lang(tn: dict) -> str:
    lang = _first_present(tn, ('language', 'lang'))
    return lang.strip() if isinstance(lang, str) else 'ANY'


def collect_trade_name_languages(values: Sequence) -> List[str]:
    """Every trade-name language present in the data, sorted."""
    langs = set()
    for item in values:
        if not isinstance(item, dict):
            continue
        for udi in _udi_entries(item) or []:
            if not isinstance(udi, dict) or not isinstance(udi.get('tradeNames'), list):
                continue
            for tn in udi['tradeNames']:
                if isinstance(tn, dict):
                    langs.add(_trade_name_lang(tn))
    return sorted(langs)


def collect_headers(values: Sequence) -> Tuple[List[str], List[str]]:
    """
    Returns (headers, trade_name_langs).

    headers = top-level keys in first-seen order (without udiDis), then udiDiCode,
    then one tradeName_<LANG> column per language.
    """
    headers: List[str] = []
    seen = set()
    for item in values:
        if not isinstance(item, dict):
            continue
        for key in item:
            if key == 'udiDis' or key in seen:
                continue
            seen.add(key)
            headers.append(key)

    langs = collect_trade_name_languages(values)
    headers.append(UDI_CODE_COLUMN)
    headers.extend(f"{TRADE_NAME_PREFIX}{lang}" for lang in langs)
    return headers, langs


def extract_trade_names_by_lang(udi: dict) -> Dict[str, str]:
    """language -> text; several names in one language are joined with ' | '."""
    names: Dict[str, str] = {}
    tns = udi.get('tradeNames') if isinstance(udi, dict) else None
    if not isinstance(tns, list):
        return names
    for tn in tns:
        if not isinstance(tn, dict):
            continue
        text, _ = _text_and_lang(tn)
        if not text:
            continue
        lang = _trade_name_lang(tn)
        names[lang] = f"{names[lang]} | {text}" if lang in names else text
    return names


def build_rows(values: Sequence, headers: Sequence[str], trade_name_langs: Sequence[str]) -> List[List[str]]:
    main_keys = headers[:len(headers) - 1 - len(trade_name_langs)]
    rows = []
    for item in values:
        if not isinstance(item, dict):
            continue
        main_fields = [get_field(item, key) for key in main_keys]

        udis = _udi_entries(item)
        if udis is None:
            entries = [('', {})]
        else:
            entries = [
                (get_field(udi, UDI_CODE_COLUMN) if isinstance(udi, dict) else '',
                 extract_trade_names_by_lang(udi))
                for udi in udis
            ]

        for code, tn_map in entries:
            rows.append(main_fields + [code] + [tn_map.get(lang, '') for lang in trade_name_langs])
    return rows


def flatten_records(values: Sequence) -> pd.DataFrame:
    """Flatten swissdamed records into a string DataFrame (one row per UDI-DI)."""
    headers, langs = collect_headers(values)
    rows = build_rows(values, headers, langs)
    logger.info(
        "Processed %d items, generated %d rows with %d columns.",
        len(values), len(rows), len(headers),
    )
    return pd.DataFrame(rows, columns=headers, dtype=str)


# ---------------------------------------------------------------------------
# Row -> MatchQuery
# ---------------------------------------------------------------------------

def _cell(row, col: str) -> str:
    val = row.get(col, '') if hasattr(row, 'get') else ''
    if val is None or (isinstance(val, float) and math.isnan(val)):
        return ''
    return str(val)


def build_match_query(row) -> MatchQuery:
    """
    Route a flattened row into DE / FR / IT buckets.

    tradeName_DE/FR/IT go to their own bucket. ANY, EN and any other language go to
    all three so products with only an English or untagged name can still match.
    deviceName and modelName are appended to all three; companyName is the brand.
    """
    buckets = {'de': '', 'fr': '', 'it': ''}

    def append(keys, text):
        for k in keys:
            buckets[k] = f"{buckets[k]} {text}"

    columns = row.index if isinstance(row, pd.Series) else list(row)
    for col in columns:
        if not str(col).startswith(TRADE_NAME_PREFIX):
            continue
        val = _cell(row, col)
        if not val:
            continue
        lang = str(col)[len(TRADE_NAME_PREFIX):]
        if lang in _BUCKET_LANGS:
            append([_BUCKET_LANGS[lang]], val)
        else:
            append(list(buckets.keys()), val)

    for col in (DEVICE_COLUMN, MODEL_COLUMN):
        val = _cell(row, col)
        if val:
            append(list(buckets.keys()), val)

    return MatchQuery(de=buckets['de'], fr=buckets['fr'], it=buckets['it'],
                      brand=_cell(row, BRAND_COLUMN))
