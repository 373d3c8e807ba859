"""Quest backend RPC client.

The backend is a Nakama server exposing quest logic as RPC functions over its
HTTP API (``POST /v2/rpc/{name}``). The quest core only depends on the
abstract ``QuestBackend``; ``NakamaBackend`` is the HTTP implementation.
"""

import json
from abc import ABC, abstractmethod
from typing import Any, TypeVar

import aiohttp
import structlog
from pydantic import ValidationError

from wayfarer.config import get_settings
from wayfarer.core.errors import BackendError
from wayfarer.core.geo import Location
from wayfarer.services.models import (
    AckResponse,
    AuthSession,
    AvailableQuestsResponse,
    CompleteQuestResponse,
    CompleteStepResponse,
    Quest,
    QuestDetailResponse,
    RpcResponse,
    StartQuestResponse,
    SubmitMediaResponse,
    location_payload,
)

logger = structlog.get_logger(__name__)

ResponseT = TypeVar("ResponseT", bound=RpcResponse)


class QuestBackend(ABC):
    """Abstract quest backend used by the quest core."""

    @abstractmethod
    async def get_available_quests(
        self, location: Location, max_distance_km: float
    ) -> AvailableQuestsResponse:
        """List quests near ``location``."""
        pass

    @abstractmethod
    async def start_quest(self, quest_id: str) -> StartQuestResponse:
        """Join a quest."""
        pass

    @abstractmethod
    async def get_quest_detail(self, quest_id: str) -> Quest:
        """Fetch a quest including its steps."""
        pass

    @abstractmethod
    async def complete_step(
        self, quest_id: str, step_id: str, location: Location | None
    ) -> CompleteStepResponse:
        """Mark a step complete at the user's location."""
        pass

    @abstractmethod
    async def complete_quest(self, quest_id: str) -> CompleteQuestResponse:
        """Finish a quest and collect its XP reward."""
        pass

    @abstractmethod
    async def update_user_location(self, location: Location) -> AckResponse:
        """Report the user's location."""
        pass

    @abstractmethod
    async def submit_step_media(
        self,
        quest_id: str,
        step_id: str,
        media_type: str,
        media_url: str | None,
        text: str | None,
    ) -> SubmitMediaResponse:
        """Attach proof-of-visit media to a step."""
        pass


class NakamaBackend(QuestBackend):
    """
    HTTP client for the Nakama RPC API.

    Every response is validated into a typed model. Timeouts, HTTP errors,
    undecodable bodies, schema mismatches and ``success: false`` all surface
    as ``BackendError``.
    """

    def __init__(
        self,
        base_url: str | None = None,
        server_key: str | None = None,
        token: str | None = None,
        timeout_seconds: float | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            base_url: Server URL; defaults to settings.nakama_base_url
            server_key: Server key for authentication calls
            token: Existing session token (skip authenticate_email)
            timeout_seconds: Per-request timeout, capped at the configured ceiling
            session: Shared aiohttp session; one is created lazily if None
        """
        settings = get_settings()
        self.base_url = (base_url or settings.nakama_base_url).rstrip("/")
        self.server_key = server_key or settings.nakama_server_key
        self.token = token
        requested = timeout_seconds or settings.rpc_timeout_seconds
        self.timeout_seconds = min(requested, settings.rpc_timeout_ceiling_seconds)
        self._session = session
        self._owns_session = session is None

        logger.info("nakama_backend_initialized", base_url=self.base_url)

    @property
    def is_authenticated(self) -> bool:
        return self.token is not None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=self.timeout_seconds)

    async def close(self) -> None:
        """Close the HTTP session if this client opened it."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def authenticate_email(
        self, email: str, password: str, create: bool = True, username: str | None = None
    ) -> AuthSession:
        """
        Authenticate with email and password and keep the session token.

        Raises:
            BackendError: If authentication fails
        """
        url = f"{self.base_url}/v2/account/authenticate/email"
        body: dict[str, Any] = {"email": email, "password": password}
        if username:
            body["username"] = username

        try:
            async with self._get_session().post(
                url,
                params={"create": "true" if create else "false"},
                json=body,
                auth=aiohttp.BasicAuth(self.server_key, ""),
                timeout=self._timeout(),
            ) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    logger.error("authentication_failed", status=resp.status, body=text[:200])
                    raise BackendError(f"Authentication failed: {resp.status}", rpc="authenticate")
                data = await resp.json()
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            logger.error("authentication_error", error=str(e))
            raise BackendError(f"Authentication error: {e}", rpc="authenticate") from e

        try:
            auth = AuthSession.model_validate(data)
        except ValidationError as e:
            raise BackendError("Malformed authentication response", rpc="authenticate") from e

        self.token = auth.token
        logger.info("authentication_successful", user_id=auth.user_id, username=auth.username)
        return auth

    async def call_rpc(self, name: str, payload: dict[str, Any] | None = None) -> Any:
        """
        Call an RPC function and return its decoded payload.

        Raises:
            BackendError: On timeout, HTTP error or undecodable response
        """
        if not self.token:
            raise BackendError("Not authenticated", rpc=name)

        url = f"{self.base_url}/v2/rpc/{name}"
        body = json.dumps(payload or {})

        logger.debug("rpc_call", rpc=name, has_payload=bool(payload))

        try:
            async with self._get_session().post(
                url,
                data=body,
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self.token}",
                },
                timeout=self._timeout(),
            ) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    logger.error("rpc_http_error", rpc=name, status=resp.status, body=text[:200])
                    raise BackendError(f"RPC call failed: {resp.status}", rpc=name)
                data = await resp.json()
        except TimeoutError as e:
            logger.error("rpc_timeout", rpc=name, timeout_seconds=self.timeout_seconds)
            raise BackendError(f"RPC {name} timed out", rpc=name) from e
        except (aiohttp.ClientError, ValueError) as e:
            logger.error("rpc_transport_error", rpc=name, error=str(e))
            raise BackendError(f"RPC {name} failed: {e}", rpc=name) from e

        if not isinstance(data, dict) or data.get("payload") is None:
            raise BackendError(f"RPC {name} returned no payload", rpc=name)

        raw = data["payload"]
        if isinstance(raw, str):
            try:
                return json.loads(raw)
            except ValueError as e:
                raise BackendError(f"RPC {name} returned invalid JSON", rpc=name) from e
        return raw

    async def _call(
        self, name: str, payload: dict[str, Any], model: type[ResponseT]
    ) -> ResponseT:
        raw = await self.call_rpc(name, payload)
        if raw is None:
            raise BackendError(f"RPC {name} returned an empty response", rpc=name)

        try:
            response = model.model_validate(raw)
        except ValidationError as e:
            logger.error("rpc_payload_malformed", rpc=name, errors=e.error_count())
            raise BackendError(f"RPC {name} returned a malformed payload", rpc=name) from e

        if not response.success:
            logger.warning("rpc_reported_failure", rpc=name, error=response.error)
            raise BackendError(response.error or f"RPC {name} failed", rpc=name)

        return response

    async def get_available_quests(
        self, location: Location, max_distance_km: float
    ) -> AvailableQuestsResponse:
        payload = {**location_payload(location), "maxDistanceKm": max_distance_km}
        return await self._call("get_available_quests", payload, AvailableQuestsResponse)

    async def start_quest(self, quest_id: str) -> StartQuestResponse:
        return await self._call("start_quest", {"quest_id": quest_id}, StartQuestResponse)

    async def get_quest_detail(self, quest_id: str) -> Quest:
        response = await self._call(
            "get_quest_detail", {"questId": quest_id}, QuestDetailResponse
        )
        return response.quest

    async def complete_step(
        self, quest_id: str, step_id: str, location: Location | None
    ) -> CompleteStepResponse:
        payload: dict[str, Any] = {"quest_id": quest_id, "step_id": step_id}
        if location is not None:
            payload.update(location_payload(location))
        return await self._call("complete_step", payload, CompleteStepResponse)

    async def complete_quest(self, quest_id: str) -> CompleteQuestResponse:
        return await self._call("complete_quest", {"quest_id": quest_id}, CompleteQuestResponse)

    async def update_user_location(self, location: Location) -> AckResponse:
        return await self._call("update_user_location", location_payload(location), AckResponse)

    async def submit_step_media(
        self,
        quest_id: str,
        step_id: str,
        media_type: str,
        media_url: str | None,
        text: str | None,
    ) -> SubmitMediaResponse:
        payload = {
            "questId": quest_id,
            "stepId": step_id,
            "mediaType": media_type,
            "mediaUrl": media_url,
            "textContent": text,
        }
        return await self._call("submit_step_media", payload, SubmitMediaResponse)

    async def __aenter__(self) -> "NakamaBackend":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
