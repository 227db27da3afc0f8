"""JSON API fetcher for research, event and calendar sources.

These sources are all "GET a JSON document, find the list of records in it"
with small per-source differences that live in ``Source.metadata``:

- ``params``: query parameters for the request.
- ``items_key``: dotted path to the record list (e.g. ``"data.results"``).
  When absent the whole response body is the payload.
- ``id_field``: record field used to sort records into a stable order.
- ``token_env``: name of an environment variable holding a bearer token.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any

import requests

from signalpoll.errors import FetchError, ParseError
from signalpoll.polling.state import Source

logger = logging.getLogger(__name__)


def extract_items(body: Any, items_key: str | None) -> Any:
    """Follow a dotted path into a decoded JSON body.

    Raises:
        ParseError: If a path segment is missing.
    """
    if not items_key:
        return body
    current = body
    for part in items_key.split("."):
        if not isinstance(current, dict) or part not in current:
            raise ParseError(f"Response has no '{items_key}' field")
        current = current[part]
    return current


def canonicalize_records(records: Any, id_field: str | None) -> Any:
    """Sort a record list by ``id_field`` so ordering changes are ignored."""
    if not id_field or not isinstance(records, list):
        return records
    return sorted(
        records,
        key=lambda record: str(record.get(id_field, "")) if isinstance(record, dict) else str(record),
    )


@dataclass(slots=True)
class JsonApiFetcher:
    """Fetcher for JSON-over-HTTP sources."""

    user_agent: str = "signalpoll/0.1"
    session: requests.Session | None = None

    def fetch(self, source: Source, timeout: float) -> Any:
        if not source.url:
            raise FetchError(f"{source.kind.value} source {source.id} has no URL")

        headers = {"User-Agent": self.user_agent, "Accept": "application/json"}
        token_env = source.metadata.get("token_env")
        if token_env:
            token = os.environ.get(token_env)
            if not token:
                raise FetchError(f"Environment variable {token_env} is not set")
            headers["Authorization"] = f"Bearer {token}"

        http = self.session or requests
        try:
            response = http.get(
                source.url,
                params=source.metadata.get("params"),
                headers=headers,
                timeout=timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise FetchError(f"Request to '{source.url}' failed: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise ParseError(f"Response from '{source.url}' is not JSON: {e}") from e

        records = extract_items(body, source.metadata.get("items_key"))
        return canonicalize_records(records, source.metadata.get("id_field"))
