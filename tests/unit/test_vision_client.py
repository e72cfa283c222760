import json
import httpx
import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock
from openai import APIConnectionError, BadRequestError
from app.models.actions import Action, ActionName, DecisionKind, Exchange, PageObservation
from app.vision.client import (
    VisionDecisionClient,
    VisionError,
    VisionParseError,
    VisionTransientError,
    build_messages,
    parse_decision,
)
from app.vision.prompts import FUNNEL_NAVIGATION_PROMPT

def page(url="https://shop.example.com/", title="Shop"):
    return PageObservation(url=url, title=title, screenshot_base64="aW1n")

def tool_message(name, arguments, content=None):
    call = SimpleNamespace(function=SimpleNamespace(name=name, arguments=arguments))
    return SimpleNamespace(content=content, tool_calls=[call])

def completion(message):
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])

@pytest.mark.unit
class TestParseDecision:
    def test_action(self):
        decision = parse_decision(tool_message("click_at", '{"x": 500, "y": 120}', "Clicking Buy Now"))
        assert decision.kind == DecisionKind.ACTION
        assert decision.action.name == ActionName.CLICK_AT
        assert decision.action.args == {"x": 500, "y": 120}
        assert decision.text == "Clicking Buy Now"

    def test_done(self):
        decision = parse_decision(tool_message("task_complete", '{"summary": "Checkout reached"}'))
        assert decision.kind == DecisionKind.DONE
        assert decision.text == "Checkout reached"
        assert decision.action is None

    def test_blocked(self):
        decision = parse_decision(tool_message("report_blocked", '{"reason": "CAPTCHA"}'))
        assert decision.kind == DecisionKind.BLOCKED
        assert decision.text == "CAPTCHA"

    def test_text_only_answer_is_a_parse_error(self):
        with pytest.raises(VisionParseError):
            parse_decision(SimpleNamespace(content="I would click the button", tool_calls=None))

    def test_invalid_arguments(self):
        with pytest.raises(VisionParseError):
            parse_decision(tool_message("click_at", "{x: 1"))
        with pytest.raises(VisionParseError):
            parse_decision(tool_message("click_at", "[1, 2]"))

    def test_unknown_action(self):
        with pytest.raises(VisionParseError):
            parse_decision(tool_message("drag_and_drop", "{}"))

    def test_first_of_several_calls_wins(self):
        message = tool_message("scroll_document", '{"direction": "down"}')
        message.tool_calls.append(SimpleNamespace(function=SimpleNamespace(name="go_back", arguments="{}")))
        assert parse_decision(message).action.name == ActionName.SCROLL_DOCUMENT

@pytest.mark.unit
class TestBuildMessages:
    def test_framing_leads_and_current_page_closes(self):
        messages = build_messages("https://shop.example.com/", [], page(), task="Stop at the quiz")
        assert messages[0] == {"role": "system", "content": FUNNEL_NAVIGATION_PROMPT}
        assert "https://shop.example.com/" in messages[1]["content"]
        assert "Stop at the quiz" in messages[1]["content"]
        assert messages[-1]["role"] == "user"
        assert messages[-1]["content"][1]["image_url"]["url"] == "data:image/jpeg;base64,aW1n"

    def test_history_becomes_tool_calls(self):
        exchange = Exchange(
            seen=page(),
            thought="Scrolling",
            action=Action(name=ActionName.SCROLL_DOCUMENT, args={"direction": "down"}),
            result_url="https://shop.example.com/",
            error="scroll_document timed out",
        )
        messages = build_messages("https://shop.example.com/", [exchange], page(url="https://shop.example.com/quiz"))
        assert [m["role"] for m in messages] == ["system", "user", "user", "assistant", "tool", "user"]
        call = messages[3]["tool_calls"][0]
        assert call["function"]["name"] == "scroll_document"
        assert json.loads(call["function"]["arguments"]) == {"direction": "down"}
        assert messages[4]["tool_call_id"] == call["id"]
        assert json.loads(messages[4]["content"])["error"] == "scroll_document timed out"
        assert "https://shop.example.com/quiz" in messages[-1]["content"][0]["text"]

    def test_missing_screenshot_sends_text_only(self):
        blank = PageObservation(url="https://shop.example.com/", title="Shop", screenshot_base64="")
        content = build_messages("https://shop.example.com/", [], blank)[-1]["content"]
        assert len(content) == 1
        assert "screenshot unavailable" in content[0]["text"]

@pytest.mark.unit
class TestVisionDecisionClient:
    @pytest.fixture
    def provider(self):
        return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=AsyncMock())))

    @pytest.mark.asyncio
    async def test_decide(self, provider):
        provider.chat.completions.create.return_value = completion(
            tool_message("click_at", '{"x": 10, "y": 20}', "Accepting cookies")
        )
        client = VisionDecisionClient(client=provider, model="test-model")
        decision = await client.decide("https://shop.example.com/", [], page())
        assert decision.action.name == ActionName.CLICK_AT
        kwargs = provider.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["tool_choice"] == "required"
        assert {tool["function"]["name"] for tool in kwargs["tools"]} >= {"click_at", "task_complete", "report_blocked"}

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self, provider):
        request = httpx.Request("POST", "https://api.example.com/v1/chat/completions")
        provider.chat.completions.create.side_effect = APIConnectionError(request=request)
        client = VisionDecisionClient(client=provider)
        with pytest.raises(VisionTransientError):
            await client.decide("https://shop.example.com/", [], page())

    @pytest.mark.asyncio
    async def test_bad_request_is_not_transient(self, provider):
        request = httpx.Request("POST", "https://api.example.com/v1/chat/completions")
        response = httpx.Response(400, request=request, json={"error": {"message": "bad image"}})
        provider.chat.completions.create.side_effect = BadRequestError("bad image", response=response, body=None)
        client = VisionDecisionClient(client=provider)
        with pytest.raises(VisionError) as exc_info:
            await client.decide("https://shop.example.com/", [], page())
        assert not isinstance(exc_info.value, VisionTransientError)

    @pytest.mark.asyncio
    async def test_no_choices_is_a_parse_error(self, provider):
        provider.chat.completions.create.return_value = SimpleNamespace(choices=[])
        client = VisionDecisionClient(client=provider)
        with pytest.raises(VisionParseError):
            await client.decide("https://shop.example.com/", [], page())
