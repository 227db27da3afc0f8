"""Processor that appends newly seen items to a per-source JSONL inbox.

A changed payload usually still contains items delivered by earlier polls,
so the processor keeps the keys it has already written and only appends the
rest. Downstream consumers read the inbox files.
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from signalpoll import paths
from signalpoll.errors import ProcessingError
from signalpoll.polling.change import content_hash
from signalpoll.polling.state import Source

logger = logging.getLogger(__name__)

# Keys remembered per source; older ones are forgotten first
MAX_SEEN_KEYS = 5000


def _item_key(item: Any) -> str:
    if isinstance(item, dict) and item.get("id"):
        return str(item["id"])
    return content_hash(item)


def _as_items(payload: Any) -> Iterable[Any]:
    if isinstance(payload, list):
        return payload
    return [payload]


class InboxProcessor:
    """Writes new items of changed payloads to ``<root>/inbox/<kind>/``."""

    def __init__(self, root: Path | None = None) -> None:
        inbox_root = root / "inbox" if root is not None else paths.get_inbox_root()
        self.root = paths.ensure_directory(inbox_root)

    def _paths(self, source: Source) -> tuple[Path, Path]:
        kind_dir = paths.ensure_directory(self.root / source.kind.value)
        stem = hashlib.sha256(source.id.encode("utf-8")).hexdigest()[:16]
        return kind_dir / f"{stem}.jsonl", kind_dir / f"{stem}.seen.json"

    def _load_seen(self, seen_path: Path) -> list[str]:
        if not seen_path.exists():
            return []
        try:
            return list(json.loads(seen_path.read_text(encoding="utf-8")))
        except json.JSONDecodeError:
            logger.warning("Resetting corrupt seen-keys file %s", seen_path)
            return []

    def process(self, source: Source, payload: Any) -> int:
        inbox_path, seen_path = self._paths(source)
        seen = self._load_seen(seen_path)
        seen_set = set(seen)
        received_at = datetime.now(timezone.utc).isoformat()

        lines = []
        for item in _as_items(payload):
            key = _item_key(item)
            if key in seen_set:
                continue
            seen_set.add(key)
            seen.append(key)
            lines.append(json.dumps({
                "source_id": source.id,
                "kind": source.kind.value,
                "received_at": received_at,
                "item": item,
            }, ensure_ascii=False))

        if not lines:
            return 0

        try:
            with open(inbox_path, "a", encoding="utf-8") as f:
                f.write("\n".join(lines) + "\n")
            tmp_path = seen_path.with_suffix(".json.tmp")
            tmp_path.write_text(json.dumps(seen[-MAX_SEEN_KEYS:]), encoding="utf-8")
            tmp_path.replace(seen_path)
        except OSError as e:
            raise ProcessingError(f"Could not write inbox for {source.id}: {e}") from e

        logger.info("Wrote %d new items from %s", len(lines), source.display_name)
        return len(lines)

    def read(self, source: Source) -> list[dict[str, Any]]:
        """Return every inbox record written for ``source``."""
        inbox_path, _ = self._paths(source)
        if not inbox_path.exists():
            return []
        return [
            json.loads(line)
            for line in inbox_path.read_text(encoding="utf-8").splitlines()
            if line
        ]
