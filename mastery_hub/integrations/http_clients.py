"""
HTTP clients for the grading and content services.

Both clients retry timeouts, transport errors and 5xx responses with
exponential backoff, fail fast on 4xx, and raise CollaboratorError once
retries are exhausted so the caller can abort before writing anything.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

import httpx
from loguru import logger

from mastery_hub.core.errors import CollaboratorError, InvalidInputError, validate_score
from mastery_hub.core.models import AttemptFormat, Difficulty
from mastery_hub.integrations.protocols import GradeResult, Item


class _RetryingClient:
    """Shared retry loop around a synchronous httpx client."""

    name = "collaborator"

    def __init__(
        self,
        api_url: str,
        timeout_ms: int = 30000,
        retry_attempts: int = 3,
        transport: httpx.BaseTransport | None = None,
        backoff_base: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the client.

        Args:
            api_url: Base URL of the service
            timeout_ms: Request timeout in milliseconds
            retry_attempts: Number of attempts before giving up
            transport: Custom httpx transport (tests use httpx.MockTransport)
            backoff_base: Seconds for the first backoff (doubles each retry)
            sleep: Sleep function used between retries
        """
        self.api_url = api_url.rstrip("/")
        self.retry_attempts = max(1, retry_attempts)
        self.backoff_base = backoff_base
        self._sleep = sleep
        self.client = httpx.Client(
            base_url=self.api_url,
            timeout=httpx.Timeout(timeout_ms / 1000.0),
            follow_redirects=True,
            transport=transport,
        )

    def close(self) -> None:
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def _post(self, path: str, payload: dict[str, Any]) -> Any:
        last_error: Exception | None = None

        for attempt in range(self.retry_attempts):
            try:
                response = self.client.post(path, json=payload)
                response.raise_for_status()
                return response.json()

            except httpx.HTTPStatusError as e:
                last_error = e
                if e.response.status_code < 500:
                    logger.error("{} client error: {}", self.name, e.response.status_code)
                    raise CollaboratorError(self.name, f"HTTP {e.response.status_code}") from e
                logger.warning(
                    "{} server error {} on attempt {}/{}",
                    self.name,
                    e.response.status_code,
                    attempt + 1,
                    self.retry_attempts,
                )

            except (httpx.TimeoutException, httpx.RequestError) as e:
                last_error = e
                logger.warning(
                    "{} request error on attempt {}/{}: {}",
                    self.name,
                    attempt + 1,
                    self.retry_attempts,
                    e,
                )

            except ValueError as e:
                # Body was not JSON
                raise CollaboratorError(self.name, "malformed response") from e

            if attempt < self.retry_attempts - 1:
                self._sleep(self.backoff_base * 2**attempt)

        logger.error("{} failed after {} attempts: {}", self.name, self.retry_attempts, last_error)
        raise CollaboratorError(self.name, f"failed after {self.retry_attempts} attempts") from last_error


class HttpGrader(_RetryingClient):
    """Grades free-text responses via POST /grade."""

    name = "grader"

    def grade(self, item: Item, response: str) -> GradeResult:
        data = self._post(
            "/grade",
            {
                "item_id": item.id,
                "format": item.format.value,
                "prompt": item.prompt,
                "rubric": item.rubric,
                "response": response,
            },
        )
        try:
            score = validate_score(data["score_norm"])
        except (KeyError, TypeError, ValueError, InvalidInputError) as e:
            raise CollaboratorError(self.name, f"invalid score in response: {data!r}") from e

        return GradeResult(
            score_norm=score,
            feedback=str(data.get("feedback", "")),
            error_tags=frozenset(data.get("error_tags", ())),
        )


class HttpContentProvider(_RetryingClient):
    """Fetches or generates items via POST /items."""

    name = "content provider"

    def generate_or_fetch_items(
        self,
        skill_id: str,
        format: AttemptFormat,
        difficulty: Difficulty,
        count: int,
    ) -> list[Item]:
        data = self._post(
            "/items",
            {
                "skill_id": skill_id,
                "format": format.value,
                "difficulty": difficulty.value,
                "count": count,
            },
        )
        try:
            return [
                Item(
                    id=str(raw["id"]),
                    skill_ids=tuple(raw.get("skill_ids") or (skill_id,)),
                    format=AttemptFormat(raw.get("format", format.value)),
                    difficulty=Difficulty(raw.get("difficulty", difficulty.value)),
                    prompt=raw.get("prompt", ""),
                    correct_answer=raw.get("correct_answer"),
                    rubric=raw.get("rubric") or {},
                )
                for raw in data["items"]
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise CollaboratorError(self.name, "malformed item payload") from e
