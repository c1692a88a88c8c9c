import pytest
import xlwt
from openpyxl import Workbook

from app.errors import ParseError
from app.formats import format_from_filename
from app.services.parsers import count_records, parse_records


def names(records):
    return [r.name for r in records]


def test_json_array_and_users_envelope(tmp_path):
    bare = tmp_path / "bare.json"
    bare.write_text('[{"name": "Ann"}, {"Name": "Bob"}, {"用户名": "Chen"}]', encoding="utf-8")
    assert names(parse_records(bare, "json")) == ["Ann", "Bob", "Chen"]

    envelope = tmp_path / "envelope.json"
    envelope.write_text('{"exportTime": "x", "users": [{"id": 1, "name": "Dee"}]}', encoding="utf-8")
    assert names(parse_records(envelope, "json")) == ["Dee"]


def test_json_blank_names_are_left_for_validation(tmp_path):
    path = tmp_path / "blank.json"
    path.write_text('[{"name": "Ann"}, {"name": "   "}]', encoding="utf-8")
    records = parse_records(path, "json")
    assert [r.position for r in records] == [1, 2]
    assert records[1].name == "   "


def test_json_missing_name_reports_position(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text('[{"name": "Ann"}, {"email": "b@example.com"}]', encoding="utf-8")
    with pytest.raises(ParseError, match="record 2"):
        parse_records(path, "json")


@pytest.mark.parametrize("content", ["{", '{"people": []}', '"text"'])
def test_json_wrong_shape(tmp_path, content):
    path = tmp_path / "bad.json"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(ParseError):
        parse_records(path, "json")


def test_csv_with_bom_quotes_and_blank_lines(tmp_path):
    path = tmp_path / "users.csv"
    path.write_text(
        "\ufeffID,Name,Created At\n"
        '\n'
        '1,"Smith, Ann",2024-01-01\n'
        '2,"The ""Boss""",2024-01-02\n'
        '3,Plain,2024-01-03\n',
        encoding="utf-8",
    )
    assert names(parse_records(path, "csv")) == ["Smith, Ann", 'The "Boss"', "Plain"]


def test_csv_without_name_column(tmp_path):
    path = tmp_path / "users.csv"
    path.write_text("id,email\n1,a@example.com\n", encoding="utf-8")
    with pytest.raises(ParseError, match="No name column"):
        parse_records(path, "csv")


def test_csv_empty_name_reports_line(tmp_path):
    path = tmp_path / "users.csv"
    path.write_text("name,age\nAnn,3\n,4\n", encoding="utf-8")
    with pytest.raises(ParseError, match="line 3"):
        parse_records(path, "csv")


def test_xlsx_first_sheet(tmp_path):
    path = tmp_path / "users.xlsx"
    wb = Workbook()
    ws = wb.active
    ws.append(["ID", "USERNAME"])
    ws.append([1, " Ann "])
    ws.append([None, None])
    ws.append([2, "Bob"])
    wb.create_sheet("ignored").append(["name"])
    wb.save(path)

    assert names(parse_records(path, "xlsx")) == ["Ann", "Bob"]


def test_xlsx_empty_name_cell(tmp_path):
    path = tmp_path / "users.xlsx"
    wb = Workbook()
    ws = wb.active
    ws.append(["name", "age"])
    ws.append(["Ann", 1])
    ws.append([None, 2])
    wb.save(path)

    with pytest.raises(ParseError, match="row 3"):
        parse_records(path, "xlsx")


def test_xlsx_garbage(tmp_path):
    path = tmp_path / "users.xlsx"
    path.write_bytes(b"definitely not a zip")
    with pytest.raises(ParseError):
        parse_records(path, "xlsx")


def test_count_records(tmp_path):
    path = tmp_path / "users.csv"
    path.write_text("name\nAnn\nBob\n", encoding="utf-8")
    assert count_records(path, "csv") == 2


def test_count_records_rejects_empty_file(tmp_path):
    path = tmp_path / "users.json"
    path.write_text("[]", encoding="utf-8")
    with pytest.raises(ParseError, match="no records"):
        count_records(path, "json")


def write_xls(path, rows):
    book = xlwt.Workbook()
    sheet = book.add_sheet("Users")
    for y, row in enumerate(rows):
        for x, value in enumerate(row):
            if value is not None:
                sheet.write(y, x, value)
    book.add_sheet("ignored").write(0, 0, "name")
    book.save(str(path))
    return path


def test_legacy_xls_workbook(tmp_path):
    path = write_xls(tmp_path / "people.xls", [["ID", "Name"], [1, "Ann"], [None, None], [2, " Bob "], [3, "Chen"]])
    fmt = format_from_filename("people.xls")
    assert count_records(path, fmt) == 3
    assert names(parse_records(path, fmt)) == ["Ann", "Bob", "Chen"]


def test_legacy_xls_empty_name_cell(tmp_path):
    path = write_xls(tmp_path / "people.xls", [["user name", "age"], ["Ann", 1], [None, 2]])
    with pytest.raises(ParseError, match="row 3"):
        parse_records(path, "xlsx")
