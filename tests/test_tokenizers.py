from dataset_agent.normalize import clean_rows
from dataset_agent.tokenizers import csv_cell, parse_csv, to_csv


def test_header_and_rows():
    result = parse_csv("name,city\nPaul,Montreal\nAna,Lisbon\n")
    assert result.columns == ["name", "city"]
    assert result.rows == [
        {"name": "Paul", "city": "Montreal"},
        {"name": "Ana", "city": "Lisbon"},
    ]
    assert result.truncated is False


def test_crlf_and_blank_lines_are_skipped():
    result = parse_csv("a,b\r\n\r\n1,2\r\n\r\n3,4\r\n")
    assert result.columns == ["a", "b"]
    assert [r["a"] for r in result.rows] == ["1", "3"]


def test_quoted_fields_keep_commas_quotes_and_newlines():
    text = 'id,quote\n1,"He said ""hi"", ok"\n2,"two\nlines"\n'
    result = parse_csv(text)
    assert result.rows[0]["quote"] == 'He said "hi", ok'
    assert result.rows[1]["quote"] == "two\nlines"


def test_unnamed_header_cells_get_synthetic_names():
    result = parse_csv(" id ,,score\n1,x,3\n")
    assert result.columns == ["id", "col1", "score"]
    assert result.rows[0] == {"id": "1", "col1": "x", "score": "3"}


def test_duplicate_header_names_stay_unique():
    result = parse_csv("a,a,b\n1,2,3\n")
    assert result.columns == ["a", "a_1", "b"]
    assert result.rows[0] == {"a": "1", "a_1": "2", "b": "3"}


def test_ragged_rows_are_padded_or_cut():
    result = parse_csv("a,b,c\n1\n1,2,3,4,5\n")
    assert result.rows[0] == {"a": "1", "b": "", "c": ""}
    assert result.rows[1] == {"a": "1", "b": "2", "c": "3"}


def test_row_cap_truncates():
    text = "n\n" + "\n".join(str(i) for i in range(30))
    result = parse_csv(text, max_rows=10)
    assert len(result.rows) == 10
    assert result.rows[-1] == {"n": "9"}
    assert result.truncated is True


def test_empty_input():
    result = parse_csv("")
    assert result.columns == []
    assert result.rows == []


def test_cell_quoting():
    assert csv_cell('He said "hi", ok') == '"He said ""hi"", ok"'
    assert csv_cell("two\nlines") == '"two\nlines"'
    assert csv_cell("plain") == "plain"
    assert csv_cell(None) == ""
    assert csv_cell(12.5) == "12.5"
    assert csv_cell(True) == "true"
    assert csv_cell({"k": [1, 2]}) == '"{""k"":[1,2]}"'


def test_to_csv_layout():
    out = to_csv(["a", "b"], [{"a": 1, "b": None}, {"a": "x,y"}])
    assert out == 'a,b\n1,\n"x,y",'


def test_round_trip_without_escaping():
    columns = ["name", "team"]
    rows = [{"name": "ann", "team": "red"}, {"name": "bob", "team": "blue"}]
    parsed = parse_csv(to_csv(columns, rows))
    assert parsed.columns == columns
    assert parsed.rows == rows


def test_round_trip_with_escaping_modulo_coercion():
    columns = ["note", "amount"]
    rows = [
        {"note": 'He said "hi", ok', "amount": 1234.5},
        {"note": "multi\nline", "amount": 7},
    ]
    parsed = parse_csv(to_csv(columns, rows))
    _, cleaned = clean_rows(parsed.columns, parsed.rows)
    assert cleaned == rows


def test_very_large_cell_is_kept():
    big = "x" * 200000
    result = parse_csv('id,note\n1,"' + big + '"\n2,ok\n')
    assert result.rows == [{"id": "1", "note": big}, {"id": "2", "note": "ok"}]


def test_unclosed_quote_swallows_the_rest_without_failing():
    text = 'id,note\n0,fine\n1,"oops\n' + "\n".join(f"{i},ok" for i in range(2, 20002))
    result = parse_csv(text)
    assert result.columns == ["id", "note"]
    assert result.rows[0] == {"id": "0", "note": "fine"}
    assert result.rows[1]["id"] == "1"
    assert result.rows[1]["note"].startswith("oops\n2,ok")
    assert len(result.rows) == 2
