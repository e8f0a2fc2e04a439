"""Building blocks for e-mail reachability checks: verdicts, lookups, HTTP API, bulk jobs and worker."""

__version__ = "0.1.0"