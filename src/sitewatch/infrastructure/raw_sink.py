import asyncio
import json
from pathlib import Path
from typing import Any

from pathvalidate import sanitize_filename


class RawFetchJsonlSink:
    """Appends one JSON line per fetch attempt, for auditing what was requested."""

    def __init__(self, output_dir: str | Path, agent_name: str, run_id: str) -> None:
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.agent_name = agent_name
        self.run_id = run_id
        safe_name = sanitize_filename(agent_name, replacement_text="_") or "agent"
        self.file_path = self.output_dir / f"fetches_{safe_name}_{run_id}.jsonl"
        self._lock = asyncio.Lock()
        self._handle = self.file_path.open("a", encoding="utf-8")
        self._closed = False

    async def write_event(self, event: dict[str, Any]) -> None:
        payload = {"agent": self.agent_name, "run_id": self.run_id, **event}
        line = json.dumps(payload, ensure_ascii=False, default=str)
        async with self._lock:
            if self._closed:
                raise RuntimeError("RawFetchJsonlSink is closed.")
            self._handle.write(line + "\n")
            self._handle.flush()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._handle.close()
