import csv
import io
import json
from datetime import datetime, timedelta, timezone

import pytest

from reachcheck.bulk import BulkError, JobInProgressError
from reachcheck.store import BulkStore, JobStatus, JobSummary, ResultFormat, prune_main


class _Clock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **delta):
        self.now = self.now + timedelta(**delta)


START = datetime(2024, 1, 10, 12, 0, 0, tzinfo=timezone.utc)


def _result(email, reachable="safe"):
    return {
        "input": email,
        "is_reachable": reachable,
        "misc": {"is_disposable": False, "is_role_account": False, "gravatar_url": None},
        "mx": {"accepts_mail": True, "records": []},
        "smtp": {
            "can_connect_smtp": True,
            "has_full_inbox": False,
            "is_catch_all": False,
            "is_deliverable": True,
            "is_disabled": False,
        },
        "syntax": {"domain": "example.com", "is_valid_syntax": True, "username": email.split("@")[0]},
    }


@pytest.fixture
def clock():
    return _Clock(START)


@pytest.fixture
def store(clock):
    with BulkStore(clock=clock) as db:
        yield db


def test_result_format_values():
    assert ResultFormat("json") is ResultFormat.JSON
    assert ResultFormat("csv") is ResultFormat.CSV


def test_new_job_is_running(store):
    first = store.create_job(2)
    second = store.create_job(1)
    assert second > first
    report = store.job_status(first)
    assert report.job_status is JobStatus.RUNNING
    assert report.total_processed == 0
    assert report.total_records == 2
    assert report.finished_at is None
    assert report.created_at == START


def test_completed_job_summary(store, clock):
    job = store.create_job(3)
    store.add_result(job, _result("a@example.com", "safe"))
    store.add_result(job, _result("b@example.com", "risky"))
    clock.advance(minutes=5)
    store.add_result(job, _result("c@example.com", "invalid"))
    report = store.job_status(job)
    assert report.job_status is JobStatus.COMPLETED
    assert report.total_processed == 3
    assert report.summary == JobSummary(total_safe=1, total_risky=1, total_invalid=1, total_unknown=0)
    assert report.finished_at == START + timedelta(minutes=5)


def test_status_to_dict(store):
    job = store.create_job(1)
    store.add_result(job, _result("a@example.com", "unknown"))
    data = store.job_status(job).to_dict()
    assert data["job_id"] == job
    assert data["job_status"] == "Completed"
    assert data["created_at"] == "2024-01-10T12:00:00Z"
    assert data["finished_at"] == data["created_at"]
    assert data["summary"]["total_unknown"] == 1
    assert data["total_records"] == data["total_processed"] == 1


def test_unknown_job_raises(store):
    with pytest.raises(BulkError):
        store.job_status(999)
    with pytest.raises(BulkError):
        store.results_json(999)


def test_add_result_to_missing_job_raises(store):
    with pytest.raises(BulkError):
        store.add_result(42, _result("a@example.com"))


def test_results_in_progress_raise(store):
    job = store.create_job(2)
    store.add_result(job, _result("a@example.com"))
    with pytest.raises(JobInProgressError):
        store.results_json(job)
    with pytest.raises(JobInProgressError):
        store.results_csv(job)


def test_results_json_round_trip(store):
    job = store.create_job(2)
    results = [_result("a@example.com"), _result("b@example.com", "risky")]
    for result in results:
        store.add_result(job, result)
    assert json.loads(store.results_json(job)) == {"results": results}
    assert json.loads(store.results_json(job, limit=1, offset=1)) == {"results": results[1:]}


def test_results_json_default_limit(store):
    job = store.create_job(60)
    for index in range(60):
        store.add_result(job, _result(f"user{index}@example.com"))
    body = json.loads(store.results_json(job))
    assert len(body["results"]) == 50
    assert body["results"][0]["input"] == "user0@example.com"
    assert len(store.job_results(job)) == 60


def test_results_csv(store):
    job = store.create_job(2)
    store.add_result(job, _result("a@example.com"))
    store.add_result(job, _result("b@example.com", "invalid"))
    rows = list(csv.DictReader(io.StringIO(store.results_csv(job).decode("utf-8"))))
    assert [row["input"] for row in rows] == ["a@example.com", "b@example.com"]
    assert rows[1]["is_reachable"] == "invalid"
    offset_rows = list(csv.DictReader(io.StringIO(store.results_csv(job, offset=1).decode("utf-8"))))
    assert [row["input"] for row in offset_rows] == ["b@example.com"]


def test_negative_limit_rejected(store):
    with pytest.raises(ValueError):
        store.job_results(1, limit=-1)


def test_prunable_jobs(store, clock):
    done = store.create_job(1)
    store.add_result(done, _result("a@example.com"))
    unfinished = store.create_job(2)
    store.add_result(unfinished, _result("b@example.com"))
    store.create_job(1)
    clock.advance(days=10)
    assert store.prunable_jobs(5) == [done]
    assert store.prunable_jobs(10) == []


def test_prune_dry_run_keeps_jobs(store, clock):
    job = store.create_job(1)
    store.add_result(job, _result("a@example.com"))
    clock.advance(days=10)
    assert store.prune(5, dry_run=True) == [job]
    assert store.job_status(job).total_processed == 1


def test_prune_deletes_jobs(store, clock):
    job = store.create_job(1)
    store.add_result(job, _result("a@example.com"))
    keep = store.create_job(1)
    clock.advance(days=10)
    assert store.prune(5) == [job]
    with pytest.raises(BulkError):
        store.job_status(job)
    assert store.job_results(job) == []
    assert store.job_status(keep).total_records == 1
    assert store.prune(5) == []


def _old_database(path):
    old_clock = _Clock(datetime(2020, 1, 1, tzinfo=timezone.utc))
    with BulkStore(str(path), clock=old_clock) as db:
        job = db.create_job(1)
        db.add_result(job, _result("a@example.com"))
    return job


def _clear_env(monkeypatch):
    for name in ("DATABASE_URL", "DAYS_OLD", "DRY_RUN"):
        monkeypatch.delenv(name, raising=False)


def test_prune_main_deletes(tmp_path, monkeypatch):
    _clear_env(monkeypatch)
    db_path = tmp_path / "jobs.db"
    job = _old_database(db_path)
    env_file = tmp_path / "settings.env"
    env_file.write_text(f"DATABASE_URL={db_path}\nDAYS_OLD=30\n", encoding="utf-8")
    assert prune_main(["--env-file", str(env_file)]) == 0
    with BulkStore(str(db_path)) as db:
        with pytest.raises(BulkError):
            db.job_status(job)


def test_prune_main_dry_run_and_sqlite_url(tmp_path, monkeypatch):
    _clear_env(monkeypatch)
    monkeypatch.chdir(tmp_path)
    job = _old_database(tmp_path / "jobs.db")
    (tmp_path / ".env").write_text("DATABASE_URL=sqlite:///jobs.db\nDAYS_OLD=30\n", encoding="utf-8")
    monkeypatch.setenv("DRY_RUN", "")
    assert prune_main([]) == 0
    with BulkStore(str(tmp_path / "jobs.db")) as db:
        assert db.job_status(job).total_processed == 1


def test_prune_main_missing_env_file(tmp_path, monkeypatch):
    _clear_env(monkeypatch)
    with pytest.raises(SystemExit) as info:
        prune_main(["--env-file", str(tmp_path / "absent.env")])
    assert "Unable to load environment variables" in str(info.value)


def test_prune_main_bad_days_old(tmp_path, monkeypatch):
    _clear_env(monkeypatch)
    env_file = tmp_path / "settings.env"
    env_file.write_text(f"DATABASE_URL={tmp_path / 'jobs.db'}\nDAYS_OLD=soon\n", encoding="utf-8")
    with pytest.raises(SystemExit) as info:
        prune_main(["--env-file", str(env_file)])
    assert str(info.value) == "Unable to parse DAYS_OLD as integer"