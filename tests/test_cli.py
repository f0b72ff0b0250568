"""
End-to-end CLI runs against a local JSON export and a local MiGeL workbook.
"""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import json
import sqlite3

import pandas as pd
import pytest

import export
from cli import build_parser, main
from export import date_stamp, output_filename, read_csv_rows, write_csv

RECORDS = {'values': [
    {
        'companyName': 'Acme Medical AG',
        'udiDis': [{'udiDiCode': '07612345000011', 'tradeNames': [
            {'language': 'DE', 'textValue': 'ABSAUGGERÄT für Sekret'},
        ]}],
    },
    {
        'companyName': 'Helvetia Med',
        'udiDis': [{'udiDiCode': '07612345000028', 'tradeNames': [
            {'language': 'DE', 'textValue': 'Schraube Titan 4 mm'},
        ]}],
    },
]}


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "export.json").write_text(json.dumps(RECORDS), encoding='utf-8')
    return tmp_path


def write_migel_workbook(path):
    header = ['Nr', 'L1', 'L2', 'L3', 'L4', 'L5', 'L6', 'Positions-Nr.', 'Menge', 'Bezeichnung', 'Limitation']
    row = [''] * 11
    row[7], row[9], row[10] = '03.01.01.00.1', 'Absauggerät für Sekret\nnetzunabhängig', 'Nur bei Tracheostomie'
    with pd.ExcelWriter(path, engine='openpyxl') as writer:
        pd.DataFrame([header, row]).to_excel(writer, sheet_name='DE', header=False, index=False)


def test_parser_defaults():
    args = build_parser().parse_args([])
    assert (args.csv, args.sqlite, args.migel, args.deploy) == (False, False, False, False)
    assert args.page_size == 50
    assert args.diff is None


def test_csv_from_file(workdir):
    assert main(['--csv', '-f', 'export.json']) == 0

    df = read_csv_rows(workdir / output_filename('csv'))
    assert df['udiDiCode'].tolist() == ['07612345000011', '07612345000028']
    assert not (workdir / output_filename('db')).exists()


def test_no_format_flag_writes_both(workdir):
    assert main(['-f', 'export.json']) == 0
    assert (workdir / output_filename('csv')).exists()
    assert (workdir / output_filename('db')).exists()


def test_deploy_implies_sqlite(workdir, monkeypatch):
    calls = []

    class Done:
        returncode = 0

    monkeypatch.setattr(export.subprocess, 'run', lambda cmd: calls.append(cmd) or Done())

    assert main(['--csv', '--deploy', '--scp', 'user@host:/srv/x.db', '-f', 'export.json']) == 0
    assert (workdir / output_filename('db')).exists()
    assert calls == [['scp', output_filename('db'), 'user@host:/srv/x.db']]


def test_migel_with_local_catalog(workdir):
    write_migel_workbook(workdir / "migel.xlsx")

    assert main(['--migel', '--catalog', 'migel.xlsx', '-f', 'export.json']) == 0

    conn = sqlite3.connect(workdir / f"swissdamed_migel_{date_stamp()}.db")
    try:
        rows = conn.execute(
            'SELECT udiDiCode, migel_code, migel_bezeichnung, migel_limitation FROM swissdamed'
        ).fetchall()
    finally:
        conn.close()
    assert rows == [('07612345000011', '03.01.01.00.1', 'Absauggerät für Sekret', 'Nur bei Tracheostomie')]


def test_migel_unknown_config_key_fails(workdir):
    write_migel_workbook(workdir / "migel.xlsx")
    (workdir / "matching.yaml").write_text("single_min_lenght: 12\n", encoding='utf-8')

    assert main(['--migel', '--catalog', 'migel.xlsx', '--config', 'matching.yaml',
                 '-f', 'export.json']) == 1


def test_diff_mismatched_headers_fails(workdir):
    write_csv(pd.DataFrame([['1']], columns=['udiDiCode']), workdir / "old.csv")
    write_csv(pd.DataFrame([['1', 'x']], columns=['udiDiCode', 'tradeName_DE']), workdir / "new.csv")

    assert main(['--diff', 'old.csv', 'new.csv']) == 1


def test_missing_json_file_fails(workdir):
    assert main(['--csv', '-f', 'missing.json']) == 1


def test_migel_quoted_threshold_fails_before_matching(workdir):
    write_migel_workbook(workdir / "migel.xlsx")
    (workdir / "matching.yaml").write_text("multi_min_ratio: '0.3'\n", encoding='utf-8')

    assert main(['--migel', '--catalog', 'migel.xlsx', '--config', 'matching.yaml',
                 '-f', 'export.json']) == 1
    assert not (workdir / f"swissdamed_migel_{date_stamp()}.db").exists()
