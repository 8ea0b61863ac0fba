from __future__ import annotations

from typing import Any

from nightshift.backends.base import (
    AgentAdapter,
    CliResponse,
    iter_json_lines,
    optional_float,
    optional_int,
)

TEXT_KEYS = ("result", "output_text", "text", "content", "message", "final", "delta")


def extract_text(value: Any) -> str | None:
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, list):
        parts = [part for part in (extract_text(item) for item in value) if part]
        return "\n".join(parts).strip() if parts else None
    if isinstance(value, dict):
        for key in TEXT_KEYS:
            nested = extract_text(value.get(key))
            if nested:
                return nested
    return None


class KiloAdapter(AgentAdapter):
    """Kilo takes a positional prompt and streams JSON lines with `--format json`."""

    name = "kilo"
    model_flag = "-m"
    default_output_flags = ("--format", "json")
    dropped_unattended_flags = frozenset({"--yolo"})

    def parse_response(self, stdout: str, exit_code: int) -> CliResponse:
        trimmed = stdout.strip()
        if not trimmed:
            return self.no_output_response(exit_code)

        last_text: str | None = None
        last_error: str | None = None
        session_id: str | None = None
        cost: float | None = None
        turns: int | None = None
        tokens_in: int | None = None
        tokens_out: int | None = None
        parsed_any = False

        for event in iter_json_lines(trimmed):
            if isinstance(event, str):
                continue
            parsed_any = True
            text = extract_text(event)
            if text:
                last_text = text
            if event.get("is_error") is True:
                last_error = (
                    extract_text(event.get("error"))
                    or extract_text(event.get("message"))
                    or "Kilo reported an error"
                )
            error = event.get("error")
            if isinstance(error, str) and error.strip():
                last_error = error.strip()
            message = event.get("message")
            if isinstance(message, str) and str(event.get("type", "")).lower() == "error":
                last_error = message.strip()
            for key in ("session_id", "sessionId"):
                if isinstance(event.get(key), str):
                    session_id = event[key]
            cost = optional_float(event.get("total_cost_usd")) or cost
            turns = optional_int(event.get("num_turns")) or turns
            usage = event.get("usage")
            if isinstance(usage, dict):
                tokens_in = optional_int(usage.get("input_tokens")) or tokens_in
                tokens_out = optional_int(usage.get("output_tokens")) or tokens_out

        if not parsed_any:
            return CliResponse(
                success=exit_code == 0,
                result=trimmed,
                error=None if exit_code == 0 else f"CLI exited with code {exit_code}: {trimmed[:200]}",
            )

        success = exit_code == 0 and last_error is None
        return CliResponse(
            success=success,
            result=last_text or "",
            error=None if success else (last_error or f"CLI exited with code {exit_code}"),
            session_id=session_id,
            cost_usd=cost,
            turns=turns,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
        )
