"""
Tests for MiGeL workbook parsing: sheet layout, category rows, duplicates,
FR/IT attachment by position number and XLSX reading via openpyxl.
"""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import io
import logging

import pandas as pd
import pytest

from catalog import (
    COL_BEZEICHNUNG,
    COL_LIMITATION,
    COL_POSITION,
    CatalogError,
    download_catalog,
    load_catalog,
    parse_catalog,
    read_catalog_sheets,
)
from matcher import Language, MatchQuery, build_index, match_query

N_COLS = 11
HEADER = ['Nr', 'L1', 'L2', 'L3', 'L4', 'L5', 'L6', 'Positions-Nr.', 'Menge', 'Bezeichnung', 'Limitation']


def make_sheet(rows, n_cols=N_COLS):
    """rows: (position, bezeichnung, limitation); a header row is prepended."""
    data = [HEADER[:n_cols]]
    for pos, bez, lim in rows:
        row = [''] * n_cols
        if n_cols > COL_POSITION:
            row[COL_POSITION] = pos
        if n_cols > COL_BEZEICHNUNG:
            row[COL_BEZEICHNUNG] = bez
        if n_cols > COL_LIMITATION:
            row[COL_LIMITATION] = lim
        data.append(row)
    return pd.DataFrame(data)


DE_ROWS = [
    ('', 'ABSAUGGERÄTE', ''),
    ('03.01.01.00.1', 'Absauggerät für Sekret\nnetzunabhängig mit Zubehör', 'Nur bei Tracheostomie'),
    ('17.01.01.00.1', 'Kompressionsstrumpf Oberschenkel', ''),
    ('03.01.01.00.1', 'Duplikat', ''),
]
FR_ROWS = [
    ('', 'APPAREILS D’ASPIRATION', ''),
    ('03.01.01.00.1', 'Aspirateur de sécrétions', 'Seulement en cas de trachéostomie'),
    ('99.99.99.99.9', 'Inconnu', ''),
]


def default_sheets():
    return {Language.DE: make_sheet(DE_ROWS), Language.FR: make_sheet(FR_ROWS)}


# ---------------------------------------------------------------------------
# parse_catalog
# ---------------------------------------------------------------------------

def test_parse_skips_category_rows_and_duplicates(caplog):
    caplog.set_level(logging.WARNING)
    items = parse_catalog(default_sheets())

    assert [it.position_id for it in items] == ['03.01.01.00.1', '17.01.01.00.1']
    assert "Duplicate MiGeL position 03.01.01.00.1" in caplog.text


def test_parse_uses_german_display_and_limitation():
    item = parse_catalog(default_sheets())[0]
    assert item.display_text == 'Absauggerät für Sekret'
    assert item.limitation_text == 'Nur bei Tracheostomie'
    assert item.keywords(Language.DE) == ('absauggeraet', 'sekret')
    assert item.secondary(Language.DE) == ('netzunabhaengig', 'zubehoer')


def test_parse_attaches_french_by_position():
    first, second = parse_catalog(default_sheets())
    assert first.keywords(Language.FR) == ('aspirateur', 'secretions')
    assert 'tracheostomie' in first.index_keywords
    assert second.keywords(Language.FR) == ()
    assert first.keywords(Language.IT) == ()


def test_parse_ignores_unknown_foreign_positions():
    items = parse_catalog(default_sheets())
    assert all('inconnu' not in it.index_keywords for it in items)


def test_parse_warns_on_missing_or_narrow_sheets(caplog):
    caplog.set_level(logging.WARNING)
    sheets = {Language.DE: make_sheet(DE_ROWS), Language.FR: make_sheet(FR_ROWS, n_cols=5)}
    items = parse_catalog(sheets)

    assert len(items) == 2
    assert items[0].keywords(Language.FR) == ()
    assert "FR sheet has no Positions-Nr. column" in caplog.text
    assert "no IT sheet" in caplog.text


@pytest.mark.parametrize("sheets", [
    {},
    {Language.FR: make_sheet(FR_ROWS)},
    {Language.DE: make_sheet(DE_ROWS, n_cols=5)},
])
def test_parse_rejects_unusable_german_sheet(sheets):
    with pytest.raises(CatalogError):
        parse_catalog(sheets)


def test_parse_tolerates_missing_cells():
    df = make_sheet([('01.01.01.00.1', 'Rollstuhl manuell', '')])
    df.iloc[1, COL_LIMITATION] = None
    items = parse_catalog({Language.DE: df})
    assert items[0].limitation_text == ''
    assert items[0].keywords(Language.DE) == ('manuell', 'rollstuhl')


# ---------------------------------------------------------------------------
# XLSX reading
# ---------------------------------------------------------------------------

def write_workbook(target, frames):
    with pd.ExcelWriter(target, engine='openpyxl') as writer:
        for name, df in frames.items():
            df.to_excel(writer, sheet_name=name, header=False, index=False)


def test_load_catalog_from_xlsx(tmp_path):
    path = tmp_path / "migel.xlsx"
    write_workbook(path, {
        'DE': make_sheet(DE_ROWS),
        'FR': make_sheet(FR_ROWS),
        'IT': make_sheet([('17.01.01.00.1', 'Calza a compressione coscia', '')]),
    })

    items = load_catalog(path)
    assert [it.position_id for it in items] == ['03.01.01.00.1', '17.01.01.00.1']
    assert items[1].keywords(Language.IT) == ('calza', 'coscia')
    assert items[0].limitation_text == 'Nur bei Tracheostomie'


def test_read_catalog_sheets_maps_sheet_order_to_languages():
    buf = io.BytesIO()
    write_workbook(buf, {'Deutsch': make_sheet(DE_ROWS), 'Français': make_sheet(FR_ROWS)})
    buf.seek(0)

    sheets = read_catalog_sheets(buf)
    assert list(sheets) == [Language.DE, Language.FR]
    assert sheets[Language.DE].shape[1] == N_COLS


def test_parsed_catalog_matches_product_text():
    items = parse_catalog(default_sheets())
    index = build_index(items)

    hit = match_query(MatchQuery(de='ABSAUGGERÄT Sekret'), items, index)
    assert hit is not None and hit.position_id == '03.01.01.00.1'

    hit = match_query(MatchQuery(fr='Aspirateur de sécrétions portable'), items, index)
    assert hit is not None and hit.position_id == '03.01.01.00.1'


# ---------------------------------------------------------------------------
# Download (fake session)
# ---------------------------------------------------------------------------

class FakeResponse:
    def __init__(self, content=b'', status_code=200):
        self.content = content
        self.status_code = status_code
        self.ok = status_code < 400


class FakeSession:
    def __init__(self, response):
        self.response = response
        self.urls = []

    def get(self, url, headers=None):
        self.urls.append(url)
        return self.response


def test_download_catalog_writes_file(tmp_path):
    dest = tmp_path / "migel.xlsx"
    session = FakeSession(FakeResponse(b'PK\x03\x04data'))

    result = download_catalog('http://example.test/migel.xlsx', str(dest), session=session)

    assert result == str(dest)
    assert dest.read_bytes() == b'PK\x03\x04data'
    assert session.urls == ['http://example.test/migel.xlsx']


def test_download_catalog_http_error(tmp_path):
    with pytest.raises(CatalogError):
        download_catalog('http://example.test/migel.xlsx', str(tmp_path / "x.xlsx"),
                         session=FakeSession(FakeResponse(status_code=404)))
