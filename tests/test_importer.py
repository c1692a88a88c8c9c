import orjson
import pytest
from openpyxl import load_workbook

from app.errors import RecordStoreUnavailable
from app.services.importer import Importer, generate_template, validate_name
from app.services.parsers import parse_records
from app.storage.schema import TaskStatus


def write_json_upload(path, names):
    path.write_bytes(orjson.dumps([{"name": n} for n in names]))
    return path


def test_bad_records_do_not_stop_the_job(import_tasks, users, tmp_path):
    names = [f"user {i}" for i in range(1, 11)]
    names[2] = ""
    names[6] = "   "
    upload = write_json_upload(tmp_path / "upload.json", names)
    task_id = import_tasks.create_task("json", source_name="people.json")

    result = Importer(import_tasks, users).run(task_id, upload, "json")

    assert (result.total_records, result.success_records, result.failed_records) == (10, 8, 2)
    rec = import_tasks.get_task(task_id)
    assert rec.status is TaskStatus.COMPLETED
    assert rec.progress == 100
    assert rec.total_records == rec.processed_records == 10
    assert rec.success_records == 8
    assert rec.failed_records == 2
    assert [e.split(":")[0] for e in rec.errors] == ["record 3", "record 7"]
    assert users.count() == 8
    assert not upload.exists()


def test_names_are_trimmed_before_insert(import_tasks, users, tmp_path):
    upload = write_json_upload(tmp_path / "upload.json", ["  Ann  "])
    task_id = import_tasks.create_task("json")
    Importer(import_tasks, users).run(task_id, upload, "json")
    assert [u.name for u in users.find(None, 0, 10)] == ["Ann"]


def test_unparseable_upload_fails_the_task(import_tasks, users, tmp_path):
    upload = tmp_path / "upload.csv"
    upload.write_text("id,email\n1,a@example.com\n", encoding="utf-8")
    task_id = import_tasks.create_task("csv")

    assert Importer(import_tasks, users).run(task_id, upload, "csv") is None

    rec = import_tasks.get_task(task_id)
    assert rec.status is TaskStatus.FAILED
    assert "No name column" in rec.error
    assert not upload.exists()


def test_aborts_after_consecutive_outages(import_tasks, tmp_path):
    class DownRepository:
        calls = 0

        def create(self, name):
            self.calls += 1
            raise RecordStoreUnavailable("Database unavailable: OperationalError")

    repo = DownRepository()
    upload = write_json_upload(tmp_path / "upload.json", [f"u{i}" for i in range(20)])
    task_id = import_tasks.create_task("json")

    assert Importer(import_tasks, repo, abort_after_unavailable=3).run(task_id, upload, "json") is None

    rec = import_tasks.get_task(task_id)
    assert repo.calls == 3
    assert rec.status is TaskStatus.FAILED
    assert "3 consecutive" in rec.error
    assert rec.failed_records == 3
    assert len(rec.errors) == 3


def test_validate_name():
    assert validate_name(" Ann ") == "Ann"
    with pytest.raises(ValueError, match="empty"):
        validate_name("  ")
    with pytest.raises(ValueError, match="longer"):
        validate_name("x" * 256)


@pytest.mark.parametrize("fmt", ["json", "csv", "xlsx"])
def test_templates_can_be_imported_back(tmp_path, fmt):
    file_name, path = generate_template(fmt, tmp_path)
    assert file_name == f"import_template.{fmt}"
    assert [r.name for r in parse_records(path, fmt)] == ["Alice Zhang", "Bob Li", "Carol Wang"]


def test_damaged_template_is_rebuilt(tmp_path):
    _, path = generate_template("csv", tmp_path)
    path.write_text("garbage\n", encoding="utf-8")

    _, again = generate_template("csv", tmp_path)

    assert again == path
    assert [r.name for r in parse_records(again, "csv")] == ["Alice Zhang", "Bob Li", "Carol Wang"]
    assert sorted(p.name for p in tmp_path.iterdir()) == ["import_template.csv"]


def test_xlsx_template_sheet(tmp_path):
    _, path = generate_template("xlsx", tmp_path)
    assert load_workbook(path).worksheets[0].title == "Users"
