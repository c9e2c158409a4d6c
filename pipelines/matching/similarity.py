"""
Similarity sources for pre-embedded vector search.

A similarity source returns candidate records carrying a ``similarity``
score for a query embedding. The engine re-ranks what it returns.
"""

from typing import Any, Iterable, List, Mapping, Optional, Protocol

import numpy as np
import requests

from subsidymatch.errors import UpstreamError
from subsidymatch.logger import get_logger
from subsidymatch.retry import RetryError, exponential_backoff, should_retry_http_status

logger = get_logger()

DEFAULT_RPC_FUNCTION = "match_subsidies"


class SimilaritySource(Protocol):
    def search(self, query_vector, match_count: int, threshold: float) -> List[dict]: ...


def _fit(vector: np.ndarray, length: int) -> np.ndarray:
    if vector.shape[0] >= length:
        return vector[:length]
    return np.pad(vector, (0, length - vector.shape[0]))


class InMemorySimilaritySource:
    """Cosine similarity over records that carry an ``embedding``."""

    def __init__(self, records: Iterable[Mapping[str, Any]]):
        self._records = [dict(r) for r in records if r.get("embedding") is not None]

    def search(self, query_vector, match_count: int, threshold: float) -> List[dict]:
        query = np.asarray(query_vector, dtype=np.float64).reshape(-1)
        query_norm = np.linalg.norm(query)
        if query_norm == 0:
            return []

        hits = []
        for record in self._records:
            embedding = _fit(np.asarray(record["embedding"], dtype=np.float64), query.shape[0])
            norm = np.linalg.norm(embedding)
            if norm == 0:
                continue
            similarity = float(query @ embedding / (query_norm * norm))
            if similarity >= threshold:
                hits.append({**record, "similarity": similarity})

        hits.sort(key=lambda h: (-h["similarity"], str(h["id"])))
        return hits[:match_count]


class TransientHTTPError(Exception):
    """Retryable HTTP status returned by the similarity RPC."""

    def __init__(self, status_code: int):
        super().__init__(f"Similarity RPC returned retryable status {status_code}")
        self.status_code = status_code


class HttpSimilaritySource:
    """
    Similarity search through a PostgREST-style RPC endpoint.

    POSTs ``{query_embedding, match_count, threshold}`` to
    ``{base_url}/rest/v1/rpc/{function}`` and expects a JSON list of
    records with ``id`` and ``similarity``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        function: str = DEFAULT_RPC_FUNCTION,
        timeout: float = 15.0,
        max_retries: int = 3,
        base_delay: float = 1.0,
        session=None,
    ):
        self.url = f"{base_url.rstrip('/')}/rest/v1/rpc/{function}"
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()
        self._post_with_retry = exponential_backoff(
            max_retries=max_retries,
            base_delay=base_delay,
            exceptions=(
                requests.exceptions.Timeout,
                requests.exceptions.ConnectionError,
                TransientHTTPError,
            ),
            on_retry=self._log_retry,
        )(self._post)

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _log_retry(self, attempt: int, error: Exception, delay: float):
        logger.warning("Retrying similarity RPC", url=self.url, attempt=attempt, delay=delay, error=str(error))

    def _post(self, payload: dict):
        resp = self.session.post(self.url, json=payload, headers=self._headers(), timeout=self.timeout)
        if should_retry_http_status(resp.status_code):
            raise TransientHTTPError(resp.status_code)
        return resp

    def search(self, query_vector, match_count: int, threshold: float) -> List[dict]:
        payload = {
            "query_embedding": [float(v) for v in query_vector],
            "match_count": int(match_count),
            "threshold": float(threshold),
        }
        try:
            resp = self._post_with_retry(payload)
            resp.raise_for_status()
        except RetryError as e:
            logger.error("Similarity RPC exhausted retries", url=self.url, error=str(e))
            raise UpstreamError(f"Similarity search failed: {e}") from e
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else "HTTPError"
            logger.error("Similarity RPC request failed", url=self.url, status=status)
            raise UpstreamError(f"Similarity search failed ({status})") from e
        except requests.exceptions.RequestException as e:
            logger.error("Similarity RPC request error", url=self.url, error=str(e))
            raise UpstreamError(f"Similarity search error: {e}") from e

        try:
            rows = resp.json()
        except ValueError as e:
            raise UpstreamError("Similarity search returned invalid JSON") from e
        if not isinstance(rows, list):
            raise UpstreamError("Similarity search must return a list of records")

        results = []
        for row in rows:
            if not isinstance(row, Mapping) or row.get("id") is None or row.get("similarity") is None:
                logger.warning("Skipping malformed similarity row", row=repr(row)[:200])
                continue
            results.append(dict(row))
        return results
