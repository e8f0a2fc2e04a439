import pytest

from reachcheck.bulk import (
    BulkError,
    CreateBulkRequest,
    EmptyInputError,
    JobInProgressError,
    NoDatabaseError,
    TaskInput,
    bulk_concurrency,
    require_db,
    run_task,
)
from reachcheck.config import DEFAULT_FROM_EMAIL, DEFAULT_HELLO_NAME, CheckEmailInputProxy


def _proxy():
    return CheckEmailInputProxy(host="proxy.example.com", port=1080)


def test_task_input_round_trip():
    task = TaskInput(
        to_email="someone@example.com",
        smtp_ports=[25, 587],
        proxy=_proxy(),
        hello_name="example.com",
        from_email="sender@example.com",
    )
    assert TaskInput.from_dict(task.to_dict()) == task


def test_task_input_requires_ports():
    with pytest.raises(ValueError):
        TaskInput.from_dict({"to_email": "someone@example.com"})


def test_task_input_rejects_bad_port():
    with pytest.raises(ValueError):
        TaskInput.from_dict({"to_email": "someone@example.com", "smtp_ports": [70000]})


def test_check_inputs_one_per_port_in_order():
    task = TaskInput(to_email="someone@example.com", smtp_ports=[587, 25, 465])
    inputs = list(task.check_inputs())
    assert [i.smtp_port for i in inputs] == [587, 25, 465]
    assert all(i.to_email == "someone@example.com" for i in inputs)


def test_check_inputs_keep_defaults_when_unset():
    (only,) = TaskInput(to_email="someone@example.com", smtp_ports=[25]).check_inputs()
    assert only.hello_name == DEFAULT_HELLO_NAME
    assert only.from_email == DEFAULT_FROM_EMAIL
    assert only.proxy is None


def test_check_inputs_apply_overrides():
    task = TaskInput(
        to_email="someone@example.com",
        smtp_ports=[25],
        proxy=_proxy(),
        hello_name="mail.example.com",
        from_email="sender@example.com",
    )
    (only,) = task.check_inputs()
    assert only.hello_name == "mail.example.com"
    assert only.from_email == "sender@example.com"
    assert only.proxy == _proxy()


def test_create_request_tasks_default_port():
    request = CreateBulkRequest.from_dict(
        {"input_type": "array", "input": ["a@example.com", "b@example.com"]}
    )
    tasks = list(request.tasks())
    assert [t.to_email for t in tasks] == ["a@example.com", "b@example.com"]
    assert all(t.smtp_ports == [25] for t in tasks)


def test_create_request_tasks_share_settings():
    request = CreateBulkRequest.from_dict(
        {
            "input_type": "array",
            "input": ["a@example.com"],
            "smtp_ports": [587],
            "hello_name": "example.com",
            "proxy": {"host": "proxy.example.com", "port": 1080},
        }
    )
    (task,) = request.tasks()
    assert task.smtp_ports == [587]
    assert task.hello_name == "example.com"
    assert task.proxy == _proxy()


def test_create_request_empty_input():
    request = CreateBulkRequest.from_dict({"input_type": "array", "input": []})
    with pytest.raises(EmptyInputError):
        request.tasks()


def test_create_request_missing_input():
    with pytest.raises(ValueError):
        CreateBulkRequest.from_dict({"input_type": "array"})


@pytest.mark.asyncio
async def test_run_task_stops_at_known_verdict():
    seen = []

    async def checker(check_input):
        seen.append(check_input.smtp_port)
        return {"input": check_input.to_email, "is_reachable": "safe"}

    task = TaskInput(to_email="someone@example.com", smtp_ports=[25, 587])
    result = await run_task(task, checker)
    assert seen == [25]
    assert result["is_reachable"] == "safe"


@pytest.mark.asyncio
async def test_run_task_retries_on_unknown():
    seen = []

    def checker(check_input):
        seen.append(check_input.smtp_port)
        verdict = "unknown" if check_input.smtp_port == 25 else "invalid"
        return {"is_reachable": verdict, "port": check_input.smtp_port}

    task = TaskInput(to_email="someone@example.com", smtp_ports=[25, 587, 465])
    result = await run_task(task, checker)
    assert seen == [25, 587]
    assert result["port"] == 587


@pytest.mark.asyncio
async def test_run_task_returns_last_when_all_unknown():
    async def checker(check_input):
        return {"is_reachable": "unknown", "port": check_input.smtp_port}

    task = TaskInput(to_email="someone@example.com", smtp_ports=[25, 587])
    result = await run_task(task, checker)
    assert result["port"] == 587


@pytest.mark.asyncio
async def test_run_task_without_ports():
    async def checker(check_input):
        return {"is_reachable": "safe"}

    assert await run_task(TaskInput(to_email="someone@example.com", smtp_ports=[]), checker) is None


def test_bulk_concurrency_defaults():
    assert bulk_concurrency({}) == (10, 20)


def test_bulk_concurrency_from_env():
    env = {"RCH_MINIMUM_TASK_CONCURRENCY": "3", "RCH_MAXIMUM_CONCURRENT_TASK_FETCH": "7"}
    assert bulk_concurrency(env) == (3, 7)


@pytest.mark.parametrize("value", ["-1", "ten", ""])
def test_bulk_concurrency_invalid(value):
    with pytest.raises(ValueError):
        bulk_concurrency({"RCH_MINIMUM_TASK_CONCURRENCY": value})


def test_require_db_missing():
    with pytest.raises(NoDatabaseError) as info:
        require_db(None)
    assert info.value.status_code == 404


def test_require_db_present():
    store = object()
    assert require_db(store) is store


def test_error_hierarchy():
    assert issubclass(JobInProgressError, BulkError)
    assert EmptyInputError().status_code == 500