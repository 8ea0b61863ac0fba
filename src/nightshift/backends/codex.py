from __future__ import annotations

from typing import Any

from nightshift.backends.base import AgentAdapter, CliResponse, iter_json_lines, optional_int


class CodexAdapter(AgentAdapter):
    """`codex exec --json` streaming one JSON event per line."""

    name = "codex"
    model_flag = "-m"
    default_output_flags = ("--json",)

    @staticmethod
    def _extract_content(event: dict[str, Any]) -> str:
        item = event.get("item")
        if isinstance(item, dict):
            text = item.get("text")
            if isinstance(text, str) and item.get("type", "agent_message") == "agent_message":
                return text
            return ""

        content = event.get("content")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            parts: list[str] = []
            for entry in content:
                if isinstance(entry, dict):
                    text = entry.get("text")
                    if isinstance(text, str):
                        parts.append(text)
            return "".join(parts)

        message = event.get("message")
        if isinstance(message, dict):
            msg_content = message.get("content")
            if isinstance(msg_content, str):
                return msg_content
        return ""

    @staticmethod
    def _extract_error(event: dict[str, Any]) -> str | None:
        event_type = str(event.get("type", ""))
        if event_type == "error":
            message = event.get("message")
            return str(message) if message else "Codex reported an error"
        if event_type == "turn.failed":
            error = event.get("error")
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
            return "Codex turn failed"
        return None

    def parse_response(self, stdout: str, exit_code: int) -> CliResponse:
        if not stdout.strip():
            return self.no_output_response(exit_code)

        messages: list[str] = []
        last_error: str | None = None
        tokens_in: int | None = None
        tokens_out: int | None = None
        turns = 0
        session_id: str | None = None
        parsed_any = False

        for event in iter_json_lines(stdout):
            if isinstance(event, str):
                continue
            parsed_any = True
            content = self._extract_content(event)
            if content:
                messages.append(content)
            error = self._extract_error(event)
            if error:
                last_error = error
            if event.get("type") == "thread.started" and isinstance(event.get("thread_id"), str):
                session_id = event["thread_id"]
            if event.get("type") == "turn.completed":
                turns += 1
                usage = event.get("usage")
                if isinstance(usage, dict):
                    used_in = optional_int(usage.get("input_tokens"))
                    used_out = optional_int(usage.get("output_tokens"))
                    if used_in is not None:
                        tokens_in = (tokens_in or 0) + used_in
                    if used_out is not None:
                        tokens_out = (tokens_out or 0) + used_out

        if not parsed_any:
            return CliResponse(
                success=False,
                result=stdout.strip(),
                error=f"Codex output contained no JSON events: {stdout.strip()[:200]}",
                parse_failed=True,
            )

        success = exit_code == 0 and last_error is None
        return CliResponse(
            success=success,
            result="\n\n".join(messages).strip(),
            error=None if success else (last_error or f"CLI exited with code {exit_code}"),
            session_id=session_id,
            turns=turns or None,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
        )
