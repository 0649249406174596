"""
Progress API client.

HTTP adapter for a remote progress backend. Implements the three
progress ports so a DrillSession can run against the server instead of
the local StateStore.

Endpoints:
    GET  /users/{user_id}/progress/{track_id}   current fact stages
    POST /users/{user_id}/progress/{track_id}   stage advance for one fact
    POST /sessions/transition                   stage-entry event

Retries live in the ProgressOutbox; this client makes one attempt per
call and reports failures as PersistenceWriteFailure.
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from fastfacts.core.errors import PersistenceWriteFailure
from fastfacts.core.stages import FluencyStage

from .ports import FactsByStage, FactStats


def _is_retryable(status_code: int) -> bool:
    """Server errors, throttling and timeouts are worth another try."""
    return status_code >= 500 or status_code in (408, 429)


class HttpProgressClient:
    """
    HTTP client for the progress API.

    Args:
        base_url: API root, e.g. https://api.example.com
        track_id: Track that stage advances are written to
        timeout: Request timeout in seconds
        transport: Custom httpx transport (tests use httpx.MockTransport)
    """

    def __init__(
        self,
        base_url: str,
        track_id: str = "TRACK1",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.track_id = track_id
        self.client = httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
            transport=transport,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> HttpProgressClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # =========================================================================
    # ProgressReadPort
    # =========================================================================

    def get_current_status(self, user_id: str, track_id: str) -> dict[str, FluencyStage]:
        """
        Fetch the learner's fact stages for a track.

        Raises:
            httpx.HTTPError: On API communication failure
            InvariantViolation: If the server returns an unknown stage
        """
        response = self.client.get(f"/users/{user_id}/progress/{track_id}")
        response.raise_for_status()
        facts = self._facts_from(response.json(), track_id)
        return {fact_id: FluencyStage.parse(data["status"]) for fact_id, data in facts.items()}

    @staticmethod
    def _facts_from(payload: dict[str, Any], track_id: str) -> dict[str, dict]:
        """Accept a single track's progress or the all-tracks envelope."""
        if "tracks" in payload:
            for track in payload["tracks"]:
                if track.get("trackId") == track_id:
                    return track.get("facts") or {}
            return {}
        return payload.get("facts") or {}

    # =========================================================================
    # ProgressWritePort
    # =========================================================================

    def advance_stage(
        self,
        user_id: str,
        fact_id: str,
        new_status: FluencyStage,
        stats: FactStats | None = None,
    ) -> None:
        """
        Post a stage advance for one fact.

        The backend ignores requests that are not forward progressions, so
        replays are harmless.

        Raises:
            PersistenceWriteFailure: On transport errors or non-2xx responses
                (4xx other than 408/429 is not retryable)
        """
        body: dict[str, Any] = {"status": FluencyStage.parse(new_status).value}
        if stats is not None:
            body.update(stats.to_dict())

        try:
            response = self.client.post(
                f"/users/{user_id}/progress/{self.track_id}",
                json={"facts": {fact_id: body}},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise PersistenceWriteFailure(
                f"Progress API returned {status} for {fact_id}",
                retryable=_is_retryable(status),
            ) from e
        except httpx.HTTPError as e:
            raise PersistenceWriteFailure(f"Progress API unreachable: {e}") from e

        logger.debug("Progress API accepted {} -> {}", fact_id, body["status"])

    # =========================================================================
    # SessionActivityPort
    # =========================================================================

    def record_stage_entry(
        self,
        user_id: str,
        track_id: str,
        stage: FluencyStage,
        facts_by_stage: FactsByStage | None = None,
    ) -> None:
        payload: dict[str, Any] = {
            "userId": user_id,
            "trackId": track_id,
            "page": FluencyStage.parse(stage).value,
        }
        if facts_by_stage:
            payload["factsByStage"] = {
                FluencyStage.parse(k).value: list(v) for k, v in facts_by_stage.items()
            }
        response = self.client.post("/sessions/transition", json=payload)
        response.raise_for_status()
