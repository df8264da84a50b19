"""
AI Agent Module using Groq with Tool Calling.

Wraps the conversational engine behind a single adapter call: the user's
text goes in, natural-language text comes out. Tool calls requested by the
model are executed against the tool registry in between.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_groq import ChatGroq

from .tools import TOOLS, execute_tool


CLARIFICATION_REPLY = "I didn't quite catch that, could you rephrase?"
APOLOGY_REPLY = (
    "I'm having a bit of trouble connecting to my systems right now. "
    "Please try again in a moment."
)


@dataclass(frozen=True)
class AgentReply:
    """Final text for the user and whether a backend tool produced it."""
    text: str
    tool_used: bool


def create_chat_model(api_key: str, model: str = "llama-3.3-70b-versatile", temperature: float = 0.7):
    """
    Build the Groq chat model with the registry's tools bound to it.

    Args:
        api_key: Groq API key
        model: Groq model identifier
        temperature: Generation temperature (0.0-1.0)

    Returns:
        A runnable exposing ainvoke(messages) -> AIMessage
    """
    if not api_key or len(api_key) < 10:
        raise ValueError(f"Invalid Groq API key (length: {len(api_key) if api_key else 0})")

    llm = ChatGroq(
        model=model,
        groq_api_key=api_key,
        temperature=temperature,
        max_retries=3,
        timeout=30.0,
    )
    print(f"[AI Agent] ✓ Initialized Groq ({model}) with {len(TOOLS)} tools")
    return llm.bind_tools(TOOLS)


def _message_text(message: BaseMessage) -> str:
    """Plain text of a message whose content may be a list of blocks."""
    content = message.content
    if isinstance(content, str):
        return content.strip()
    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts).strip()


# ============================================================================
# DIALOGUE CONTEXT
# ============================================================================

class DialogueSession:
    """
    The ongoing dialogue context.

    Holds the system prompt, the ordered message history and the chat model.
    Only AIAgent.ask() mutates it, and ask() only runs inside a guarded turn.
    """

    def __init__(self, chat_model, system_prompt: Optional[str] = None):
        self.chat_model = chat_model
        self.system_prompt = system_prompt
        self.messages: List[BaseMessage] = []

    def _prompt(self) -> List[BaseMessage]:
        if self.system_prompt:
            return [SystemMessage(content=self.system_prompt)] + self.messages
        return list(self.messages)

    async def _invoke(self) -> AIMessage:
        response = await self.chat_model.ainvoke(self._prompt())
        self.messages.append(response)
        return response

    async def send_message(self, text: str) -> AIMessage:
        """Send user text within the context; the reply may request tools."""
        self.messages.append(HumanMessage(content=text))
        return await self._invoke()

    async def send_tool_results(self, results: List[ToolMessage]) -> AIMessage:
        """Send every tool result of one round back in a single exchange."""
        self.messages.extend(results)
        return await self._invoke()

    def checkpoint(self) -> int:
        return len(self.messages)

    def rollback(self, checkpoint: int):
        """Drop everything appended after checkpoint."""
        del self.messages[checkpoint:]

    def reset(self):
        self.messages.clear()


# ============================================================================
# AI AGENT CLASS
# ============================================================================

class AIAgent:
    """
    Response engine adapter.

    ask() never raises. Engine and transport failures are caught here,
    logged, and turned into a canned apology so the conversation stays
    usable; every other layer of the bot surfaces its errors instead.
    """

    def __init__(self, dialogue: DialogueSession, max_tool_rounds: int = 3):
        """
        Initialize the agent.

        Args:
            dialogue: The dialogue context this agent drives
            max_tool_rounds: Upper bound on tool follow-up rounds per ask()
        """
        self.dialogue = dialogue
        self.max_tool_rounds = max_tool_rounds

    async def ask(self, user_text: str) -> AgentReply:
        """
        Get the assistant's answer to user_text.

        Args:
            user_text: What the user said

        Returns:
            AgentReply with the final text and whether a tool fired
        """
        checkpoint = self.dialogue.checkpoint()
        try:
            response = await self.dialogue.send_message(user_text)

            rounds = 0
            while response.tool_calls and rounds < self.max_tool_rounds:
                print(f"[AI Agent] 🛠️ Tool calls requested: {len(response.tool_calls)}")
                results = [self._run_tool_call(call) for call in response.tool_calls]
                response = await self.dialogue.send_tool_results(results)
                rounds += 1

            if response.tool_calls:
                print(f"[AI Agent] ⚠️ Still requesting tools after {rounds} rounds, giving up")
                # Unanswered tool calls would make every later prompt invalid
                self.dialogue.rollback(checkpoint)
                return AgentReply(text=CLARIFICATION_REPLY, tool_used=False)

            text = _message_text(response)
            if not text:
                print("[AI Agent] ⚠️ Empty response from model, asking user to rephrase")
                return AgentReply(text=CLARIFICATION_REPLY, tool_used=False)

            return AgentReply(text=text, tool_used=rounds > 0)

        except Exception as e:
            print(f"[AI Agent] ✗ Bot logic error: {type(e).__name__}: {e}")
            self.dialogue.rollback(checkpoint)
            return AgentReply(text=APOLOGY_REPLY, tool_used=False)

    def _run_tool_call(self, call: Dict[str, Any]) -> ToolMessage:
        name = call.get("name", "")
        result = execute_tool(name, call.get("args") or {})
        return ToolMessage(
            content=json.dumps({"result": result}),
            tool_call_id=call.get("id") or "",
            name=name,
        )

    def reset_conversation(self):
        """Forget the dialogue so far."""
        self.dialogue.reset()
        print("[AI Agent] Conversation state reset")

    def get_available_tools(self) -> List[str]:
        return [t.name for t in TOOLS]
