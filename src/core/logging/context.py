"""Context variables for structured logging."""

from contextvars import ContextVar
from typing import Dict, Optional

_run_id: ContextVar[str] = ContextVar("run_id", default="")
_role: ContextVar[str] = ContextVar("role", default="")
_subject: ContextVar[str] = ContextVar("subject", default="")
_job_total: ContextVar[int] = ContextVar("job_total", default=0)


def set_log_context(
    run_id: Optional[str] = None,
    role: Optional[str] = None,
    subject: Optional[str] = None,
    job_total: Optional[int] = None,
) -> None:
    if run_id is not None:
        _run_id.set(run_id)
    if role is not None:
        _role.set(role)
    if subject is not None:
        _subject.set(subject)
    if job_total is not None:
        _job_total.set(job_total)


def get_log_context() -> Dict[str, str | int]:
    return {
        "run_id": _run_id.get(),
        "role": _role.get(),
        "subject": _subject.get(),
        "job_total": _job_total.get(),
    }


def clear_log_context() -> None:
    _run_id.set("")
    _role.set("")
    _subject.set("")
    _job_total.set(0)
