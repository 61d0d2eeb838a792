"""Current date and time."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from llm_relay.tools.base import Tool
from llm_relay.types import ToolExecutionResult, ToolParameter


class DateTimeTool(Tool):
    name = "get_date_time"
    display_name = "Date & time"
    description = "Get the current date and time, optionally in a given IANA timezone."
    parameters = [
        ToolParameter(
            name="timezone",
            type="string",
            description="IANA timezone name such as Europe/Paris (default UTC)",
            required=False,
        ),
    ]

    async def execute(self, **kwargs: Any) -> ToolExecutionResult:
        tz_name = kwargs.get("timezone") or "UTC"
        try:
            tz = timezone.utc if tz_name == "UTC" else ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            return ToolExecutionResult.failure(f"Unknown timezone: {tz_name}")
        now = datetime.now(tz)
        return ToolExecutionResult.ok(
            now.strftime("%Y-%m-%d %H:%M:%S %Z (%A)"),
            details={"iso": now.isoformat(), "timezone": tz_name},
        )
