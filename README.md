# reachcheck

`reachcheck` provides the pieces around an e-mail reachability check: the
input settings of a verification, MX lookups, facts about an address
(disposable provider, role account, Gravatar image, known breaches), the
rule that turns findings into a verdict, error reporting with user names
redacted, an HTTP API, bulk jobs stored in SQLite, and a worker that takes
verifications from an AMQP queue.

The verification itself is supplied by you: the server, the bulk jobs and
the worker all take a *checker*, a callable (plain or async) that receives a
`CheckEmailInput` and returns the output of the check, either a mapping or
an object with a `to_dict()` method.

Verdicts are the `Reachable` values from `reachcheck.reachability`:

| value     | when `calculate_reachable` returns it                                         |
|-----------|-------------------------------------------------------------------------------|
| `risky`   | disposable or role account, catch-all domain, or full inbox                   |
| `invalid` | otherwise, when not deliverable, no SMTP connection, or the mailbox is disabled |
| `safe`    | otherwise                                                                     |
| `unknown` | the SMTP details are missing (the SMTP check failed)                          |

## Installation

```
pip install reachcheck
```

To run the test suite:

```
pip install "reachcheck[test]"
pytest
```

## Modules

- `reachcheck.config` – `CheckEmailInput` and `CheckEmailInputProxy` (a
  SOCKS5 proxy), with `from_dict` and `to_dict`. Defaults: `from_email`
  `user@example.com`, `hello_name` `gmail.com`, SMTP port 25, proxy port
  1080. The `YahooVerifMethod`, `GmailVerifMethod` and `HotmailVerifMethod`
  enums select how those providers are verified.
  `CheckEmailInput.with_env_overrides` sets the sender address, HELO name
  and SMTP timeout from `RCH_FROM_EMAIL`, `RCH_HELLO_NAME` and
  `RCH_SMTP_TIMEOUT` (whole seconds), falling back to the defaults.
  `build_parser` and `parse_args` turn command-line options such as
  `--from-email`, `--smtp-port` or `--proxy-host` into a `CheckEmailInput`;
  each unset option falls back to the environment variable of the same name
  in upper case (`FROM_EMAIL`, `SMTP_PORT`, ...).
- `reachcheck.rules` – `Rule` and `RuleSet`: rules by domain, by exact MX
  host and by MX host suffix, read with `RuleSet.from_json` or `load_rules`.
- `reachcheck.reachability` – `Reachable`, `SmtpDetails`, `MxRecord`,
  `calculate_reachable`, and `choose_mx_host`, which drops honey-pot hosts,
  sorts by preference and, with three or more records left, picks one at
  random that is neither first nor last; otherwise it takes the last.
- `reachcheck.mx` – `check_mx(domain)` returns `MxDetails`; a domain without
  records gives details with no records, other failures raise `MxError`.
- `reachcheck.misc` – `check_misc`, `check_gravatar`, `check_haveibeenpwned`,
  `gravatar_url`, `load_role_accounts` and `MiscDetails`. Role accounts and
  disposable domains are passed in by the caller; an address counts as
  disposable when its domain or any parent domain is in the given set.
- `reachcheck.sentry` – `log_unknown_errors` reports the first misc or MX
  error, and SMTP errors that are neither described nor a "try again" /
  "try later" transient reply, to a `capture` callable (by default the event
  is logged). `redact` replaces the user name with `***` everywhere.
- `reachcheck.bulk` – `CreateBulkRequest`, `TaskInput` and `run_task`, which
  tries a task's SMTP ports in order until the verdict is not `unknown`; the
  errors `BulkError`, `EmptyInputError`, `JobInProgressError`,
  `CsvParseError` and `NoDatabaseError`.
- `reachcheck.store` – `BulkStore`, bulk jobs and results in SQLite, with
  `job_status`, `results_json`, `results_csv`, `prunable_jobs` and `prune`.
- `reachcheck.csv_export` – `CsvRow` and `write_csv`. The columns are
  `input`, `is_reachable`, `misc.is_disposable`, `misc.is_role_account`,
  `misc.gravatar_url`, `mx.accepts_mail`, `smtp.can_connect`,
  `smtp.has_full_inbox`, `smtp.is_catch_all`, `smtp.is_deliverable`,
  `smtp.is_disabled`, `syntax.is_valid_syntax`, `syntax.domain`,
  `syntax.username` and `error`. The `mx.accepts_mail` column is read from
  an `mx.accepts_email` field of the stored result.
- `reachcheck.server` – the HTTP API.
- `reachcheck.worker` – the AMQP worker.

Redacting a user name:

```python
from reachcheck.sentry import redact

redact("my address is someone@example.com", "someone")
# 'my address is ***@example.com'
```

## HTTP API

`reachcheck.server.create_app(checker, store=None, secret=None)` builds an
aiohttp application:

```python
from aiohttp import web
from reachcheck.server import create_app

async def checker(check_input):
    return {"input": check_input.to_email, "is_reachable": "unknown"}

web.run_app(create_app(checker), port=8080)
```

Routes:

- `GET /version` – `{"version": "0.1.0"}`
- `POST /v0/check_email` – body `{"to_email": "someone@example.com", ...}`
  (at most 16 KiB); an empty or missing `to_email` answers 400 with
  `{"message": "to_email field is required."}`
- `POST /v0/bulk` – body `{"input_type": "array", "input": [...]}`, with
  optional `proxy`, `hello_name`, `from_email` and `smtp_ports` (default
  `[25]`); answers `{"job_id": ...}` and verifies the addresses in the
  background
- `GET /v0/bulk/{job_id}` – totals, a summary of verdicts and `job_status`
  (`Running` or `Completed`)
- `GET /v0/bulk/{job_id}/results` – query parameters `format` (`json` or
  `csv`), `limit` and `offset`; JSON results come 50 at a time unless a
  limit is given; a job still running answers 500

When a secret is given, every POST must carry it in the `x-reacher-secret`
header; a missing or wrong header answers 400. Without a store the bulk
routes answer 404.

`reachcheck.server.run_server(checker)` serves the application until
cancelled, reading:

| variable                            | default     | purpose                                       |
|-------------------------------------|-------------|-----------------------------------------------|
| `RCH_HTTP_HOST`                     | `127.0.0.1` | IP address to listen on                       |
| `PORT`                              | `8080`      | port to listen on                             |
| `RCH_HEADER_SECRET`                 | unset       | secret required in `x-reacher-secret`         |
| `RCH_ENABLE_BULK`                   | `0`         | `1` enables the bulk routes                   |
| `DATABASE_URL`                      | –           | with bulk: `sqlite:///path` or a plain path   |
| `RCH_MAXIMUM_CONCURRENT_TASK_FETCH` | `20`        | bulk verifications run at the same time       |

Each check also applies `RCH_FROM_EMAIL`, `RCH_HELLO_NAME` and
`RCH_SMTP_TIMEOUT` through `with_env_overrides`.

## Queue worker

`reachcheck.worker.run_worker(checker)` consumes JSON payloads
`{"input": {...}, "webhook": {"url": ..., "extra": ...}}` from the durable
queue `check_email.Smtp` or `check_email.Headless`. The output is published
to the message's `reply_to` queue with its `correlation_id`, and posted to
the webhook as `{"output": ..., "extra": ...}` with the
`x-reacher-secret` header taken from `RCH_HEADER_SECRET`, which must then be
set. It reads `RCH_AMQP_ADDR` (default `amqp://127.0.0.1:5672`),
`RCH_BACKEND_NAME` (required), `RCH_VERIF_METHOD` (`Smtp` or `Headless`,
required) and `RCH_WORKER_CONCURRENCY` (default `10`).
`process_check_email` handles a single message and can be used on its own.

## Pruning old bulk jobs

```
reachcheck-prune
```

It loads variables from `.env` (or the file given with `--env-file`, which
must exist; variables already in the environment win), then reads
`DATABASE_URL` (`sqlite:///path` or a plain path) and `DAYS_OLD`. Completed
jobs, those whose every address has a result, created at least `DAYS_OLD`
days before today are deleted with their results. When `DRY_RUN` is set, the
ids are only logged.

## What this package does not do

- It does not check address syntax and does not hold an SMTP conversation
  with mail servers: the checker you pass in does that.
- It ships no role-account list, disposable-domain list or rule file; pass
  your own to `check_misc` and `load_rules`.
- It has no command that verifies a single address or starts the server or
  the worker; `parse_args`, `run_server` and `run_worker` are called from
  your own code.
- Bulk jobs are stored only in SQLite.