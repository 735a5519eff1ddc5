"""
Unit tests for delimited-text parsing and structural validation.
"""
import datetime as dt

from core.parsing import detect_delimiter, find_field, map_columns, parse_csv, validate_csv_structure


def test_validate_structure_accepts_synonym_headers(sample_csv):
    result = validate_csv_structure(sample_csv)
    assert result.is_valid
    assert result.errors == []


def test_validate_structure_names_missing_date_column():
    result = validate_csv_structure("Merchant,Amount,Category\nShell,10,Fuel\n")
    assert not result.is_valid
    assert result.errors == ["CSV must contain a date column"]


def test_validate_structure_requires_data_row():
    result = validate_csv_structure("Merchant,Amount,Date\n")
    assert not result.is_valid
    assert "at least a header row and one data row" in result.errors[0]


def test_validate_structure_requires_three_columns():
    result = validate_csv_structure("Merchant,Amount\nShell,10\n")
    assert not result.is_valid
    assert "at least 3 columns" in result.errors[0]


def test_parse_sample_upload(sample_csv):
    """Three mixed-format rows all parse."""
    result = parse_csv(sample_csv)

    assert result.total_rows == 3
    assert result.valid_rows == 3
    assert result.errors == []
    assert [t.description for t in result.transactions] == ["Shell Fuel", "EDF Energy", "Ryanair"]
    assert [t.amount for t in result.transactions] == [45.0, 120.0, 150.0]
    assert [t.date for t in result.transactions] == [
        dt.date(2024, 3, 1), dt.date(2024, 3, 5), dt.date(2024, 3, 5)
    ]
    assert result.transactions[1].raw_fields["Amount"] == "€120.00"


def test_zero_and_negative_amounts_are_row_errors():
    text = (
        "Description,Amount,Date\n"
        "Shell Fuel,0.00,2024-03-01\n"
        "Refund Shell,-5.00,2024-03-02\n"
        "EDF Energy,10.00,2024-03-03\n"
    )
    result = parse_csv(text)

    assert result.valid_rows == 1
    assert result.errors == [
        "Row 2: Invalid amount: 0.00",
        "Row 3: Invalid amount: -5.00",
    ]


def test_missing_field_lists_exactly_that_field():
    text = (
        "Merchant,Amount,Date\n"
        "Shell Fuel,,2024-03-01\n"
        "EDF Energy,12.00,2024-03-02\n"
    )
    result = parse_csv(text)

    assert result.errors == ["Row 2: Missing required field: amount"]
    assert result.valid_rows == result.total_rows - len(result.errors)


def test_invalid_date_and_short_description():
    text = (
        "Merchant,Amount,Date\n"
        "Shell Fuel,12.00,yesterday\n"
        "BP,12.00,2024-03-01\n"
    )
    result = parse_csv(text)

    assert result.valid_rows == 0
    assert result.errors == [
        "Row 2: Invalid date: yesterday",
        "Row 3: Description too short",
    ]


def test_semicolon_delimiter_and_bom():
    text = "\ufeffPayee;Total;Posting Date\nOffice Depot;12.50;2024-01-10\n"
    result = parse_csv(text)

    assert result.valid_rows == 1
    assert result.transactions[0].description == "Office Depot"
    assert result.transactions[0].amount == 12.5


def test_blank_rows_are_ignored():
    text = "Merchant,Amount,Date\nShell Fuel,10,2024-03-01\n,,\n"
    result = parse_csv(text)
    assert result.total_rows == 1
    assert result.errors == []


def test_detect_delimiter():
    assert detect_delimiter("a;b;c") == ";"
    assert detect_delimiter("a\tb\tc") == "\t"
    assert detect_delimiter("abc") == ","


def test_find_field_prefers_exact_then_substring():
    columns = ["Payee", "Total", "Posting Date"]
    assert find_field(columns, ["description", "merchant", "payee"]) == "Payee"
    assert map_columns(columns) == {"description": "Payee", "amount": "Total", "date": "Posting Date"}
    assert find_field(["Category"], ["date"]) is None
