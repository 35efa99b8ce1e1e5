"""
Browser push state reported over the user's WebSocket.

The push SDK and the permission prompt live in the browser. The client
reports what it sees ({"type": "push_state", "permission": ..., "sdk_loaded":
..., "subscriber_id": ..., "online": ...}) and the server asks for actions
through messages on the same channel:

    {"type": "push_init"}                 re-init the SDK after a grant
    {"type": "push_get_id"}               resolve and report the subscriber id
    {"type": "push_permission_request"}   show the native permission prompt

ClientPushBridge implements PushSdk and PermissionApi on top of these
reports, so the lifecycle polls it like it would poll the SDK itself.
"""

import asyncio
from typing import Any, Mapping, Optional

from backend.src.services.push_lifecycle import PermissionApi, PermissionState, PushSdk
from backend.src.utils.logging_config import get_logger
from backend.src.utils.websocket import ConnectionManager


logger = get_logger("push")


DEFAULT_PROMPT_TIMEOUT = 60.0


class ClientPushBridge(PushSdk, PermissionApi):
    """Last reported browser push state for one user session."""

    def __init__(
        self,
        user_id: int,
        connection_manager: ConnectionManager,
        prompt_timeout: float = DEFAULT_PROMPT_TIMEOUT,
    ):
        self.user_id = user_id
        self._connections = connection_manager
        self._prompt_timeout = prompt_timeout
        self._permission_reported = asyncio.Event()
        self.permission = PermissionState.DEFAULT
        self.sdk_loaded = False
        self.subscriber_id: Optional[str] = None
        self.online = True

    def report(self, data: Mapping[str, Any]) -> None:
        """
        Apply a push_state report from the client.

        Unknown or malformed fields are ignored.
        """
        permission = data.get("permission")
        if permission is not None:
            try:
                new_permission = PermissionState(permission)
            except ValueError:
                logger.debug(f"Ignoring unknown permission value: {permission}")
            else:
                # Any permission report answers a pending prompt, changed or not
                self.permission = new_permission
                self._permission_reported.set()

        if isinstance(data.get("sdk_loaded"), bool):
            self.sdk_loaded = data["sdk_loaded"]
        if isinstance(data.get("online"), bool):
            self.online = data["online"]
        if "subscriber_id" in data:
            subscriber_id = data["subscriber_id"]
            self.subscriber_id = str(subscriber_id) if subscriber_id else None

    def is_online(self) -> bool:
        return self.online

    async def _send(self, message_type: str) -> None:
        await self._connections.send_to_user(self.user_id, {"type": message_type})

    # PushSdk

    def is_ready(self) -> bool:
        return self.sdk_loaded

    async def init(self) -> None:
        await self._send("push_init")

    async def get_subscriber_id(self) -> Optional[str]:
        if self.subscriber_id is None:
            await self._send("push_get_id")
        return self.subscriber_id

    # PermissionApi

    def current(self) -> PermissionState:
        return self.permission

    async def request(self) -> PermissionState:
        """
        Prompt in the browser and wait for the resulting permission report.

        Returns the permission as last reported; DEFAULT if the user did not
        answer before the prompt timeout.
        """
        self._permission_reported.clear()
        await self._send("push_permission_request")
        try:
            await asyncio.wait_for(self._permission_reported.wait(), self._prompt_timeout)
        except asyncio.TimeoutError:
            logger.info("Permission prompt unanswered", extra={"user_id": self.user_id})
        return self.permission
