"""Chat Protocol front end for the calibration agent (ASI:One discoverability).

Chat users can ask for a preview or a personal summary in plain text:

    preview <org> <user> <minutes>
    summary <org> <user>

Anything else is answered with the usage text.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from uagents import Context, Protocol
from uagents_core.contrib.protocols.chat import (
    ChatAcknowledgement,
    ChatMessage,
    EndSessionContent,
    TextContent,
)

logger = logging.getLogger(__name__)

USAGE = (
    "I'm the Calibration Agent. I learn how your time estimates compare with "
    "actual time spent. Try 'preview <org> <user> <minutes>' or "
    "'summary <org> <user>'."
)


@dataclass
class ChatCommand:
    name: str
    organization_id: str
    user_id: str
    minutes: Optional[float] = None


def parse_command(text: str) -> Optional[ChatCommand]:
    parts = text.strip().split()
    if not parts:
        return None
    name = parts[0].lower()
    if name == "preview" and len(parts) == 4:
        try:
            minutes = float(parts[3])
        except ValueError:
            return None
        return ChatCommand(name, parts[1], parts[2], minutes)
    if name == "summary" and len(parts) == 3:
        return ChatCommand(name, parts[1], parts[2])
    return None


def extract_text(msg: ChatMessage) -> str:
    for item in msg.content:
        if isinstance(item, TextContent):
            return item.text
    return ""


def create_chat_protocol(answer_fn: Callable[[Optional[ChatCommand]], str]) -> Protocol:
    """Chat Protocol whose replies come from ``answer_fn(command)``.

    ``command`` is None when the text is not a recognised command.
    """
    chat_proto = Protocol(name="chat", version="0.3.0")

    @chat_proto.on_message(ChatMessage)
    async def handle_chat(ctx: Context, sender: str, msg: ChatMessage):
        await ctx.send(sender, ChatAcknowledgement(acknowledged_msg_id=msg.msg_id))

        command = parse_command(extract_text(msg))
        logger.info("Chat from %s: %s", sender, command.name if command else "usage")
        await ctx.send(
            sender,
            ChatMessage(
                msg_id=ctx.session,
                content=[TextContent(text=answer_fn(command)), EndSessionContent()],
            ),
        )

    return chat_proto
