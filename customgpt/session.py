"""
Session controller — everything the console does between a keypress and the
transcript.

Owns one SessionState (active target, chat identity, transcript, pending flag,
last notice, last test result). The state is only changed through the methods
below, and every change is pushed to subscribers, which is how the TUI stays
in sync.

Submission flow:
  1. refuse if no saved target / empty prompt (notice, nothing sent)
  2. append the user turn to the transcript
  3. create the chat on the server if this session has none yet
  4. persist the user turn
  5. build the request, send it through /proxy, decode + extract
  6. append and persist the assistant turn (reply, error placeholder,
     or an interrupted marker if the task was cancelled)

Persistence failures in steps 3, 4 and 6 are logged and never undo the
transcript: the user always sees the model's answer.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from customgpt.client import ConsoleClient
from customgpt.errors import ConsoleError, SessionBusy, TargetConfigError, TargetNotTested
from customgpt.extractor import NO_VALUE, NO_VALUE_TEXT, decode_body, extract, render_extracted
from customgpt.message_tree import display_order
from customgpt.proxy import ProxyEnvelope
from customgpt.request_builder import build_request, build_test_request
from customgpt.storage.models import DEFAULT_CHAT_NAME, Chat, Message, ROOT_ID
from customgpt.target import TargetConfig, validate_target

logger = logging.getLogger(__name__)

NOT_CONFIGURED = "Please configure and save your target before sending a message."
EMPTY_PROMPT = "User input cannot be empty"
INTERRUPTED_TEXT = "(interrupted)"


@dataclass
class TargetTestResult:
    """Outcome of "test configuration"."""
    ok: bool
    status: int = 0
    status_text: str = ""
    envelope: ProxyEnvelope | None = None
    extracted: Any = NO_VALUE
    error: str = ""

    def display(self) -> str:
        if self.error:
            return self.error
        if self.extracted is NO_VALUE:
            return "(no value at the configured mapping)"
        return render_extracted(self.extracted)


@dataclass
class SessionState:
    target: TargetConfig | None = None
    target_saved: bool = False
    chat_id: str | None = None
    chat_name: str = DEFAULT_CHAT_NAME
    transcript: list[Message] = field(default_factory=list)
    pending: bool = False
    notice: str = ""
    last_test: TargetTestResult | None = None


Listener = Callable[[SessionState], None]


class SessionController:
    """Drives one console session against a ConsoleClient."""

    def __init__(self, client: ConsoleClient):
        self.client = client
        self.state = SessionState()
        self._listeners: list[Listener] = []
        self._tested: TargetConfig | None = None

    # ── observation ──────────────────────────────────────────────────────

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def _emit(self):
        for listener in list(self._listeners):
            listener(self.state)

    def _notice(self, text: str):
        self.state.notice = text
        self._emit()

    # ── target ───────────────────────────────────────────────────────────

    async def test_target(self, config: TargetConfig) -> TargetTestResult:
        """Validate, send the raw template through the proxy, extract."""
        try:
            validate_target(config)
        except TargetConfigError as e:
            return self._record_test(config, TargetTestResult(ok=False, error=e.message))

        request = build_test_request(config)
        try:
            envelope = await self.client.proxy(request)
        except ConsoleError as e:
            logger.info("Target test failed: %s", e.message)
            return self._record_test(config, TargetTestResult(ok=False, error=e.message))

        body = decode_body(envelope.body, config.output_type)
        result = TargetTestResult(
            ok=envelope.ok,
            status=envelope.status,
            status_text=envelope.status_text,
            envelope=envelope,
            extracted=extract(body, config.response_expression),
        )
        logger.info("Target test %s -> %d %s", request.url, result.status, result.status_text)
        return self._record_test(config, result)

    def _record_test(self, config: TargetConfig, result: TargetTestResult) -> TargetTestResult:
        self._tested = copy.deepcopy(config) if result.ok else None
        self.state.last_test = result
        self._emit()
        return result

    async def save_target(self, config: TargetConfig) -> TargetConfig:
        """Make `config` the active target. It must have just passed a test unchanged."""
        if self._tested is None or self._tested != config:
            raise TargetNotTested("Test the configuration successfully before saving it.")
        saved = copy.deepcopy(config)
        self.state.target = saved
        self.state.target_saved = True
        self.state.notice = f"Target '{saved.name}' saved"
        self._emit()

        if self.state.chat_id:
            try:
                await self.client.update_chat(self.state.chat_id, config_name=saved.name)
            except ConsoleError as e:
                logger.warning("Could not record config on chat %s: %s", self.state.chat_id, e.message)
        return saved

    # ── submission ───────────────────────────────────────────────────────

    async def submit(self, prompt: str) -> Message | None:
        """
        Send one prompt. Returns the assistant message, or None when the
        submission was refused (no saved target, empty prompt).
        """
        if self.state.pending:
            raise SessionBusy("A message is already being processed")
        config = self.state.target
        if not self.state.target_saved or config is None:
            self._notice(NOT_CONFIGURED)
            return None
        if not prompt:
            self._notice(EMPTY_PROMPT)
            return None

        interaction_type = config.interaction_type
        history = list(self.state.transcript)
        parent_id = history[-1].message_id if history else ROOT_ID
        user_msg = Message(
            interaction_type=interaction_type,
            role="user",
            message_content=prompt,
            parent_id=parent_id,
        )
        self.state.transcript.append(user_msg)
        self.state.pending = True
        self.state.notice = ""
        self._emit()

        reply: Message | None = None
        try:
            await self._ensure_chat(config)
            await self._persist(user_msg)

            request = build_request(config, prompt, history)
            try:
                envelope = await self.client.proxy(request)
            except ConsoleError as e:
                logger.warning("Submission failed: %s", e.message)
                reply = self._reply(user_msg, f"Error: {e.message}", "failure")
            else:
                body = decode_body(envelope.body, config.output_type)
                text = render_extracted(extract(body, config.response_expression))
                reply = self._reply(user_msg, text, "success" if envelope.ok else "failure")
                if not envelope.ok:
                    logger.info("Target answered %d %s", envelope.status, envelope.status_text)
            self.state.transcript.append(reply)
            self._emit()
            await self._persist(reply)
            return reply
        except asyncio.CancelledError:
            if reply is None:
                reply = self._reply(user_msg, INTERRUPTED_TEXT, "interrupted")
                self.state.transcript.append(reply)
                self._emit()
                await self._persist(reply)
            raise
        finally:
            self.state.pending = False
            self._emit()

    def _reply(self, user_msg: Message, text: str, status: str) -> Message:
        return Message(
            interaction_type=user_msg.interaction_type,
            role="assistant",
            message_content=text or NO_VALUE_TEXT,
            parent_id=user_msg.message_id,
            status=status,
        )

    async def _ensure_chat(self, config: TargetConfig):
        """Create the chat on first use. Retried on later turns until it succeeds."""
        if self.state.chat_id:
            return
        try:
            data = await self.client.create_chat(chat_name=self.state.chat_name, config_name=config.name)
        except ConsoleError as e:
            logger.warning("Chat not created, continuing unsaved: %s", e.message)
            self.state.notice = "Database unavailable. Chat not saved."
            return
        self.state.chat_id = data["chat_id"]
        self.state.chat_name = data.get("chat_name") or DEFAULT_CHAT_NAME
        logger.info("Created chat %s", self.state.chat_id)

    async def _persist(self, msg: Message):
        """Store one transcript message; adopts the server's id on success."""
        if not self.state.chat_id:
            return
        try:
            message_id, _chat = await self.client.append_message(
                self.state.chat_id,
                role=msg.role,
                interaction_type=msg.interaction_type,
                message_content=msg.message_content,
                parent_id=msg.parent_id,
                status=msg.status,
            )
        except ConsoleError as e:
            logger.warning("Message not persisted (chat %s): %s", self.state.chat_id, e.message)
            return
        msg.message_id = message_id

    # ── chats ────────────────────────────────────────────────────────────

    async def load_chat(self, chat_id: str) -> Chat:
        """Replace the transcript with a stored chat, in display order."""
        if self.state.pending:
            raise SessionBusy("Wait for the current message to finish")
        chat = await self.client.get_chat(chat_id)
        self.state.chat_id = chat.chat_id
        self.state.chat_name = chat.chat_name
        self.state.transcript = display_order(chat.messages)
        self.state.notice = f"Loaded '{chat.chat_name}'"
        self._emit()
        return chat

    async def list_chats(self, limit: int = 50, skip: int = 0) -> tuple[list[dict], int]:
        data = await self.client.list_chats(limit=limit, skip=skip)
        return data.get("chats", []), data.get("total", 0)

    async def rename_chat(self, chat_name: str) -> None:
        chat_name = chat_name.strip()
        if not chat_name:
            self._notice("Chat name cannot be empty")
            return
        if self.state.chat_id:
            chat = await self.client.update_chat(self.state.chat_id, chat_name=chat_name)
            chat_name = chat.chat_name
        self.state.chat_name = chat_name
        self._notice(f"Renamed to '{chat_name}'")

    def new_chat(self):
        """Start over with an empty transcript; the next turn creates a new chat."""
        if self.state.pending:
            raise SessionBusy("Wait for the current message to finish")
        self.state.chat_id = None
        self.state.chat_name = DEFAULT_CHAT_NAME
        self.state.transcript = []
        self.state.notice = ""
        self._emit()
