"""
Response engine adapter tests.
Drives AIAgent with LangChain's fake chat model so the tool loop runs
against the real tool registry.
"""
import json

import pytest
from langchain_core.language_models.fake_chat_models import GenericFakeChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from support_bot.server.ai_agent import (
    AIAgent,
    APOLOGY_REPLY,
    CLARIFICATION_REPLY,
    DialogueSession,
    _message_text,
)


def _tool_call(name, args, call_id="call_1"):
    return AIMessage(content="", tool_calls=[{"name": name, "args": args, "id": call_id}])


def _agent(*responses, max_tool_rounds=3, system_prompt=None):
    model = GenericFakeChatModel(messages=iter(responses))
    return AIAgent(DialogueSession(model, system_prompt=system_prompt), max_tool_rounds=max_tool_rounds)


class RecordingModel:
    """Returns canned replies and remembers each prompt it saw."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.prompts = []

    async def ainvoke(self, messages):
        self.prompts.append(list(messages))
        return self.responses.pop(0)


class StrictToolModel(RecordingModel):
    """Rejects prompts holding tool calls that were never answered, like the real API."""

    async def ainvoke(self, messages):
        answered = {m.tool_call_id for m in messages if isinstance(m, ToolMessage)}
        for message in messages:
            for call in getattr(message, "tool_calls", None) or []:
                if call["id"] not in answered:
                    raise ValueError(f"tool_call_id {call['id']} has no tool response")
        return await super().ainvoke(messages)


class TestAsk:

    @pytest.mark.asyncio
    async def test_plain_answer(self):
        agent = _agent("We're open 9 to 5, Monday to Friday.")

        reply = await agent.ask("What are your support hours?")

        assert reply.text == "We're open 9 to 5, Monday to Friday."
        assert reply.tool_used is False

    @pytest.mark.asyncio
    async def test_order_lookup_uses_tool(self):
        agent = _agent(
            _tool_call("get_order_status", {"order_id": "ORD-123"}),
            "Order ORD-123 shipped and arrives on October 25th.",
        )

        reply = await agent.ask("Where is order #ORD-123?")

        assert reply.tool_used is True
        assert reply.text == "Order ORD-123 shipped and arrives on October 25th."

        tool_messages = [m for m in agent.dialogue.messages if isinstance(m, ToolMessage)]
        assert len(tool_messages) == 1
        assert tool_messages[0].tool_call_id == "call_1"
        assert json.loads(tool_messages[0].content) == {
            "result": {"status": "Shipped", "delivery_date": "2023-10-25"}
        }

    @pytest.mark.asyncio
    async def test_all_calls_of_a_round_answered_together(self):
        both = AIMessage(content="", tool_calls=[
            {"name": "get_order_status", "args": {"order_id": "ORD-456"}, "id": "a"},
            {"name": "get_account_balance", "args": {}, "id": "b"},
        ])
        model = RecordingModel(both, AIMessage(content="Processing, and you have $1250.50."))
        agent = AIAgent(DialogueSession(model))

        reply = await agent.ask("Order 456 and my balance?")

        assert reply.tool_used is True
        assert len(model.prompts) == 2
        follow_up = model.prompts[1]
        assert [m.tool_call_id for m in follow_up if isinstance(m, ToolMessage)] == ["a", "b"]
        balance = json.loads(follow_up[-1].content)["result"]
        assert balance == {"balance": 1250.50, "currency": "USD", "plan": "Premium"}

    @pytest.mark.asyncio
    async def test_unknown_order_is_reported_to_model(self):
        agent = _agent(
            _tool_call("get_order_status", {"order_id": "ORD-999"}),
            "I couldn't find that order.",
        )

        reply = await agent.ask("Where is ORD-999?")

        tool_message = next(m for m in agent.dialogue.messages if isinstance(m, ToolMessage))
        assert json.loads(tool_message.content) == {"result": {"status": "Order not found."}}
        # The model still decided after a tool call
        assert reply.tool_used is True

    @pytest.mark.asyncio
    async def test_unknown_tool_returns_error_result(self):
        agent = _agent(
            _tool_call("cancel_order", {"order_id": "ORD-123"}),
            "Sorry, I can't do that.",
        )

        reply = await agent.ask("Cancel ORD-123")

        tool_message = next(m for m in agent.dialogue.messages if isinstance(m, ToolMessage))
        assert json.loads(tool_message.content) == {"result": {"error": "Function not found"}}
        assert reply.text == "Sorry, I can't do that."

    @pytest.mark.asyncio
    async def test_empty_answer_asks_to_rephrase(self):
        agent = _agent("")

        reply = await agent.ask("hmm")

        assert reply.text == CLARIFICATION_REPLY
        assert reply.tool_used is False

    @pytest.mark.asyncio
    async def test_tool_rounds_are_bounded(self):
        agent = _agent(
            _tool_call("get_account_balance", {}, "c1"),
            _tool_call("get_account_balance", {}, "c2"),
            _tool_call("get_account_balance", {}, "c3"),
            _tool_call("get_account_balance", {}, "c4"),
            max_tool_rounds=3,
        )

        reply = await agent.ask("balance?")

        assert reply.text == CLARIFICATION_REPLY
        assert reply.tool_used is False
        # The abandoned exchange is dropped from the context
        assert agent.dialogue.messages == []

    @pytest.mark.asyncio
    async def test_conversation_usable_after_tool_limit(self):
        model = StrictToolModel(
            _tool_call("get_account_balance", {}, "c1"),
            _tool_call("get_account_balance", {}, "c2"),
            AIMessage(content="Hello!"),
        )
        agent = AIAgent(DialogueSession(model), max_tool_rounds=1)

        assert (await agent.ask("balance?")).text == CLARIFICATION_REPLY
        reply = await agent.ask("hi")

        assert reply.text == "Hello!"
        assert reply.text != APOLOGY_REPLY

    @pytest.mark.asyncio
    async def test_engine_failure_returns_apology_and_rolls_back(self):
        class BrokenModel:
            async def ainvoke(self, messages):
                raise TimeoutError("request timed out")

        agent = AIAgent(DialogueSession(BrokenModel()))

        reply = await agent.ask("Where is my order?")

        assert reply.text == APOLOGY_REPLY
        assert reply.tool_used is False
        assert agent.dialogue.messages == []

    @pytest.mark.asyncio
    async def test_context_carries_across_turns(self):
        model = RecordingModel(AIMessage(content="Hi!"), AIMessage(content="Sure."))
        agent = AIAgent(DialogueSession(model, system_prompt="You are Sonic."))

        await agent.ask("hello")
        await agent.ask("and again")

        second = model.prompts[1]
        assert isinstance(second[0], SystemMessage)
        assert [m.content for m in second if isinstance(m, HumanMessage)] == ["hello", "and again"]

    @pytest.mark.asyncio
    async def test_reset_conversation(self):
        agent = _agent("Hi!")
        await agent.ask("hello")
        assert agent.dialogue.messages

        agent.reset_conversation()

        assert agent.dialogue.messages == []

    def test_available_tools(self):
        agent = _agent()
        assert agent.get_available_tools() == ["get_order_status", "get_account_balance"]


class TestMessageText:

    def test_string_content(self):
        assert _message_text(AIMessage(content="  hello ")) == "hello"

    def test_block_content(self):
        message = AIMessage(content=[{"type": "text", "text": "hel"}, "lo", {"type": "image_url"}])
        assert _message_text(message) == "hello"
