"""Browser WebSocket handler - dispatches UI commands to the learner hub."""

import asyncio
import base64
import binascii
from typing import Any

import structlog
from fastapi import WebSocket, WebSocketDisconnect

from ..activities.machine import ActivitySnapshot
from ..conversation.chat import ChatMessage
from ..hub import HubRegistry, LearnerHub
from ..models.profile import LearningProfile
from ..notifications import Notification
from ..speech.adapter import SpeechError

logger = structlog.get_logger()


class BrowserSession:
    """One browser connection bound to at most one signed-in learner.

    Hub events (notifications, profile changes, activity transitions, chat
    messages) are queued and pushed to the browser by a sender task, so
    synchronous listeners never block on the socket.

    Args:
        websocket: WebSocket connection to the browser.
        registry: Shared hub registry.
    """

    def __init__(self, websocket: WebSocket, registry: HubRegistry):
        self.websocket = websocket
        self.registry = registry
        self.hub: LearnerHub | None = None
        self._outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._tasks: set[asyncio.Task] = set()
        self._sender: asyncio.Task | None = None

    def start(self) -> None:
        self._sender = asyncio.create_task(self._send_loop())

    async def close(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        await self._release()
        if self._sender is not None:
            self._sender.cancel()
            await asyncio.gather(self._sender, return_exceptions=True)

    def push(self, message: dict[str, Any]) -> None:
        self._outbox.put_nowait(message)

    async def _send_loop(self) -> None:
        while True:
            message = await self._outbox.get()
            try:
                await self.websocket.send_json(message)
            except (WebSocketDisconnect, RuntimeError):
                logger.info("browser_send_failed", type=message.get("type"))
                return

    # Hub listeners

    def _on_notification(self, notification: Notification) -> None:
        self.push({"type": "notification", "message": notification.message, "level": notification.type})

    def _on_profile(self, profile: LearningProfile) -> None:
        self.push({"type": "profile", "profile": profile.to_document()})

    def _on_activity(self, snapshot: ActivitySnapshot) -> None:
        self.push({"type": "activity_state", **snapshot.model_dump(mode="json")})

    def _on_chat(self, message: ChatMessage) -> None:
        self.push({"type": "chat_message", **message.model_dump(mode="json")})

    def _attach(self, hub: LearnerHub) -> None:
        self.hub = hub
        hub.notifier.subscribe(self._on_notification)
        hub.sync.subscribe(self._on_profile)
        hub.chat.subscribe(self._on_chat)
        for machine in hub.activities.values():
            machine.subscribe(self._on_activity)

    def _detach(self) -> None:
        hub, self.hub = self.hub, None
        if hub is None:
            return
        hub.notifier.unsubscribe(self._on_notification)
        hub.sync.unsubscribe(self._on_profile)
        hub.chat.unsubscribe(self._on_chat)
        for machine in hub.activities.values():
            machine.unsubscribe(self._on_activity)

    def session_state(self) -> dict[str, Any]:
        hub = self.hub
        return {
            "type": "session_state",
            "status": "signed_in" if hub is not None else "signed_out",
            "identity": hub.identity if hub is not None else None,
            "speech_supported": bool(hub and hub.speech and hub.speech.supported),
            "generation_configured": bool(hub and hub.generator.configured),
        }

    # Commands

    async def handle(self, data: dict[str, Any]) -> None:
        msg_type = data.get("type", "")
        if msg_type == "login":
            await self._login(str(data.get("identity") or ""))
            return
        if msg_type == "logout":
            await self._logout()
            return

        hub = self.hub
        if hub is None:
            self.push({"type": "error", "message": "Please sign in first."})
            return

        if msg_type == "activity":
            await self._activity(hub, data)
        elif msg_type == "chat":
            self._spawn(hub.chat.send_message(str(data.get("text", ""))))
        elif msg_type == "dashboard":
            self._spawn(hub.coach.refresh_if_starter())
        elif msg_type == "speak":
            if hub.speech is not None:
                hub.speech.speak(str(data.get("text", "")), data.get("voice"))
        elif msg_type == "listen":
            await self._listen(hub, data.get("action"))
        else:
            logger.warning("unknown_message_type", type=msg_type)

    async def _login(self, identity: str) -> None:
        if not identity:
            self.push({"type": "error", "message": "An identity is required to sign in."})
            return
        if self.hub is not None:
            if self.hub.identity == identity:
                self.push(self.session_state())
                return
            await self._logout()
        hub = await self.registry.acquire(identity)
        if hub is None:
            self.push({"type": "error", "message": "Could not load your learning data."})
            return
        self._attach(hub)
        self.push(self.session_state())
        self._on_profile(hub.sync.profile)
        for message in hub.chat.transcript:
            self._on_chat(message)

    async def _logout(self) -> None:
        if self.hub is None:
            return
        await self._release()
        self.push(self.session_state())

    async def _release(self) -> None:
        hub = self.hub
        if hub is None:
            return
        identity = hub.identity
        self._detach()
        if identity is not None:
            await self.registry.release(identity)

    async def _activity(self, hub: LearnerHub, data: dict[str, Any]) -> None:
        try:
            machine = hub.activity(str(data.get("activity", "")))
        except ValueError as e:
            self.push({"type": "error", "message": str(e)})
            return

        action = data.get("action")
        params = dict(data.get("params") or {})
        if action == "start":
            if "image" in params:
                try:
                    params["image"] = base64.b64decode(params["image"], validate=True)
                except (binascii.Error, TypeError):
                    hub.notifier.show("Failed to read the file.", "error")
                    return
            self._spawn(machine.start(**params))
        elif action == "enter_context":
            machine.enter_context()
        elif action == "answer":
            machine.answer(str(data.get("value", "")))
        elif action == "next":
            self._spawn(machine.next())
        elif action == "cancel":
            machine.cancel()
        elif action == "done":
            machine.done()
        elif action == "remove_suggested" and hasattr(machine, "remove_suggested"):
            machine.remove_suggested(str(data.get("value", "")))
        elif action == "state":
            self._on_activity(machine.snapshot())
        else:
            logger.warning("unknown_activity_action", activity=machine.name, action=action)

    async def _listen(self, hub: LearnerHub, action: str | None) -> None:
        speech = hub.speech
        if speech is None or not speech.supported:
            return
        try:
            if action == "start":
                speech.start_listening()
            elif action == "stop":
                text = await speech.stop_listening()
                if text is not None:
                    self.push({"type": "transcript", "text": text})
        except SpeechError as e:
            hub.notifier.show(str(e), "error")

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled() or task.exception() is None:
            return
        logger.error("browser_command_failed", exc_info=task.exception())
        self.push({"type": "error", "message": "Something went wrong. Please try again."})


async def handle_browser_websocket(websocket: WebSocket, registry: HubRegistry) -> None:
    """Handle a browser WebSocket connection."""
    await websocket.accept()
    session = BrowserSession(websocket, registry)
    session.start()
    session.push(session.session_state())

    try:
        while True:
            data = await websocket.receive_json()
            await session.handle(data)
    except WebSocketDisconnect:
        logger.info("browser_disconnected")
    except Exception:
        logger.exception("websocket_handler_error")
    finally:
        await session.close()
