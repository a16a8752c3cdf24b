"""Shutdown timing parameters and query-string parsing."""

from __future__ import annotations

from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import ParameterError

_FIELDS = ("delay", "period", "deadline")


class ShutdownParameters(BaseModel):
    """Timing for one shutdown cycle or one waiter, in seconds.

    ``delay`` is slept once before the first connection check, ``period``
    between polls, and ``deadline`` bounds the whole sequence measured from
    its start. ``deadline`` must leave room for at least the delay and one
    poll period.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    delay: float = Field(default=0, ge=0)
    period: float = Field(default=5, ge=0)
    deadline: float = Field(default=300, ge=0)

    @model_validator(mode="after")
    def _deadline_covers_delay_and_period(self) -> ShutdownParameters:
        if self.deadline < self.delay + self.period:
            raise ValueError(
                f"deadline ({self.deadline:g}s) must be at least "
                f"delay + period ({self.delay + self.period:g}s)"
            )
        return self


def _parse_seconds(name: str, raw: str) -> int:
    text = raw.strip()
    if text.startswith("-") and text[1:].isascii() and text[1:].isdigit():
        raise ParameterError(f"{name} must not be negative")
    # int() alone would also take "+5", "1_0" and non-ASCII digits.
    if not (text.isascii() and text.isdigit()):
        raise ParameterError(f"{name} must be an integer number of seconds")
    return int(text)


def parse_query_params(
    query: Mapping[str, str],
    defaults: ShutdownParameters,
) -> ShutdownParameters:
    """Merge ``delay``/``period``/``deadline`` query values onto *defaults*.

    Missing or empty values keep the default. The merged result is validated
    as a whole, so a single override can make an otherwise valid default set
    inconsistent.
    """
    values = defaults.model_dump()
    for name in _FIELDS:
        raw = query.get(name)
        if raw is None or not raw.strip():
            continue
        values[name] = _parse_seconds(name, raw)
    try:
        return ShutdownParameters.model_validate(values)
    except ValidationError as exc:
        messages = "; ".join(err["msg"] for err in exc.errors())
        raise ParameterError(messages) from exc
