"""
Tabular Parser Tests
====================
Supplier CSV parsing (delimiters, quotes, header folding) and the Excel
path through pandas.
"""

import pandas as pd
import pytest

from authority.normalization import load_rows_from_file, parse_csv
from authority.normalization.tabular import detect_delimiter, split_line


def test_comma_separated():
    content = "gtin,name,sku,price\n4006501003638,Surgical Gloves M,GLV-M,12.50\n"
    rows = parse_csv(content)

    assert rows == [{'gtin': '4006501003638', 'name': 'Surgical Gloves M', 'sku': 'GLV-M', 'price': '12.50'}]
    print("✓ Comma-separated file parsed")


def test_semicolon_separated_with_decimal_commas():
    content = "Name;SKU;Price\nPflaster 6cm;PF-6;1,25\nGaze;GZ-1;0,80\n"
    rows = parse_csv(content)

    assert [r['name'] for r in rows] == ['Pflaster 6cm', 'Gaze']
    assert rows[0]['price'] == '1,25'


def test_quotes_protect_delimiters():
    content = 'name,sku,price\n"Gloves, nitrile (L)",NIT-L,"1,5"\n'
    rows = parse_csv(content)

    assert rows[0]['name'] == 'Gloves, nitrile (L)'
    assert rows[0]['price'] == '1,5'


def test_header_names_folded():
    rows = parse_csv("Product Name,Unit-Price\nSyringe,0.35\n")
    assert rows == [{'product_name': 'Syringe', 'unit_price': '0.35'}]


def test_rows_without_name_or_gtin_are_dropped():
    content = "gtin,name,price\n,,1.00\n4006501003638,,2.00\n,Bandages,3.00\n"
    rows = parse_csv(content)

    assert len(rows) == 2
    assert rows[0]['gtin'] == '4006501003638'
    assert rows[1]['name'] == 'Bandages'


def test_blank_lines_and_short_rows():
    content = "\n\nname,sku,price\n\nGauze,GZ\n"
    rows = parse_csv(content)
    assert rows == [{'name': 'Gauze', 'sku': 'GZ', 'price': ''}]


def test_bom_bytes():
    content = "\ufeffname,price\nGauze,1.00\n".encode('utf-8')
    rows = parse_csv(content)
    assert rows == [{'name': 'Gauze', 'price': '1.00'}]


def test_empty_input():
    assert parse_csv("") == []
    assert parse_csv(b"") == []
    assert parse_csv("\n  \n") == []


def test_detect_delimiter():
    assert detect_delimiter("a,b,c") == ','
    assert detect_delimiter("a;b;c") == ';'
    assert detect_delimiter('"a;b;c",d') == ','
    assert detect_delimiter("abc") == ','
    assert detect_delimiter("abc", ';') == ';'
    assert detect_delimiter("Gloves;12,50", ';') == ';'


def test_tied_line_uses_header_delimiter():
    rows = parse_csv("name;price\nGloves;12,50\n")

    assert rows == [{'name': 'Gloves', 'price': '12,50'}]


def test_split_line_strips_values():
    assert split_line(' a , "b,c" ,d ', ',') == ['a', 'b,c', 'd']


# ============================================================================
# FILES
# ============================================================================

def test_load_csv_file(tmp_path):
    path = tmp_path / "prices.csv"
    path.write_text("name;price\nGauze;1,00\n", encoding='utf-8')

    rows = load_rows_from_file(path)
    assert rows == [{'name': 'Gauze', 'price': '1,00'}]


def test_load_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_rows_from_file(tmp_path / "missing.csv")


def test_load_excel_file(tmp_path):
    path = tmp_path / "prices.xlsx"
    pd.DataFrame([
        {'GTIN': '04006501003638', 'Name': 'Surgical Gloves M', 'Price': '12.50'},
        {'GTIN': '', 'Name': '', 'Price': '1.00'},
    ]).to_excel(path, index=False)

    rows = load_rows_from_file(path)

    assert len(rows) == 1
    assert rows[0]['gtin'] == '04006501003638'
    assert rows[0]['name'] == 'Surgical Gloves M'
    print("✓ Excel price list read with pandas")
