import copy

import pytest
from google.genai import types

from codestudio.llm import ProviderError
from codestudio.providers import (
    AdapterFactory,
    GeminiChatAdapter,
    OpenAIChatAdapter,
    parse_data_url,
    parse_tool_arguments,
    to_data_url,
)
from codestudio.schemas import ConversationMessage, Credential, ToolCall, ToolOutcome
from tests.fakes import FakeGeminiClient, gemini_call, gemini_image, gemini_response, gemini_text


class RecordingChatClient:
    def __init__(self, replies):
        self.replies = list(replies)
        self.requests = []

    def base_url(self, provider):
        if provider not in {"groq", "mistral"}:
            raise ProviderError(f"Provider not implemented: {provider}")
        return f"https://{provider}.test/v1"

    async def chat_completion(self, provider, api_key, model, messages, **kwargs):
        self.requests.append({"messages": copy.deepcopy(messages), **kwargs})
        return self.replies.pop(0)


def _reply(content=None, tool_calls=None):
    message = {"role": "assistant", "content": content}
    if tool_calls is not None:
        message["tool_calls"] = tool_calls
    return {"choices": [{"message": message}]}


def test_data_url_helpers():
    url = to_data_url("image/png", b"\x89PNG")
    blob = parse_data_url(url)
    assert blob.mime_type == "image/png"
    assert blob.data == b"\x89PNG"
    assert parse_data_url("https://example.com/cat.png") is None


@pytest.mark.parametrize(
    "raw,expected",
    [
        ('{"path": "a.txt"}', {"path": "a.txt"}),
        ({"path": "b.txt"}, {"path": "b.txt"}),
        ("", {}),
        ("{not json", {}),
        ("[1, 2]", {}),
        (None, {}),
    ],
)
def test_parse_tool_arguments_is_best_effort(raw, expected):
    assert parse_tool_arguments(raw) == expected


@pytest.mark.asyncio
async def test_openai_adapter_builds_conversation_and_echoes_tool_calls():
    client = RecordingChatClient(
        [
            _reply(
                tool_calls=[
                    {"id": "call_1", "type": "function", "function": {"name": "read_file", "arguments": '{"path": "a.txt"}'}},
                    {"id": "call_1", "function": {"name": "list_files", "arguments": "oops"}},
                ]
            ),
            _reply(content="All done"),
        ]
    )
    history = [
        ConversationMessage(role="user", content="earlier question"),
        ConversationMessage(role="model", content="earlier answer"),
    ]
    adapter = OpenAIChatAdapter(client, "groq", "key", "llama", "SYSTEM", history, tools=[{"type": "function"}])

    turn = await adapter.send_user("Fix it", images=["data:image/png;base64,AAAA"])
    first = client.requests[0]["messages"]
    assert [m["role"] for m in first] == ["system", "user", "assistant", "user"]
    assert first[0]["content"] == "SYSTEM"
    assert first[3]["content"][0] == {"type": "text", "text": "Fix it"}
    assert first[3]["content"][1]["image_url"]["url"] == "data:image/png;base64,AAAA"
    assert client.requests[0]["tools"] == [{"type": "function"}]

    assert [c.name for c in turn.tool_calls] == ["read_file", "list_files"]
    assert turn.tool_calls[0].args == {"path": "a.txt"}
    assert turn.tool_calls[1].args == {}
    ids = [c.call_id for c in turn.tool_calls]
    assert ids[0] == "call_1"
    assert len(set(ids)) == 2

    outcomes = [ToolOutcome(call=c, result={"success": True}) for c in turn.tool_calls]
    final = await adapter.send_tool_results(outcomes)
    assert final.text == "All done"
    assert final.tool_calls == []

    second = client.requests[1]["messages"]
    echoed = second[4]
    assert echoed["role"] == "assistant"
    assert [c["id"] for c in echoed["tool_calls"]] == ids
    assert echoed["tool_calls"][1]["type"] == "function"
    assert [(m["role"], m["tool_call_id"]) for m in second[5:]] == [("tool", ids[0]), ("tool", ids[1])]
    assert second[5]["content"] == '{"success": true}'


@pytest.mark.asyncio
async def test_openai_adapter_rejects_empty_choices():
    adapter = OpenAIChatAdapter(RecordingChatClient([{"choices": []}]), "groq", "k", "m", "sys", [])
    with pytest.raises(ProviderError):
        await adapter.send_user("hi")


@pytest.mark.asyncio
async def test_gemini_adapter_maps_parts_to_turns():
    client = FakeGeminiClient(
        chat_responses=[
            gemini_response(gemini_text("Looking"), gemini_call("read_file", {"path": "a.txt"}, call_id="fc-1")),
            gemini_response(gemini_text("Here you go"), gemini_image(b"img")),
        ]
    )
    history = [
        ConversationMessage(role="user", content="hello"),
        ConversationMessage(role="model", content="hi"),
        ConversationMessage(role="user", content=""),
    ]
    adapter = GeminiChatAdapter(client, "gemini-2.5-flash", "SYSTEM", history, tools=[types.Tool()])

    kwargs = client.create_kwargs
    assert kwargs["model"] == "gemini-2.5-flash"
    assert [c.role for c in kwargs["history"]] == ["user", "model"]
    assert kwargs["config"].system_instruction == "SYSTEM"
    assert kwargs["config"].automatic_function_calling.disable is True

    turn = await adapter.send_user("Read a.txt", images=["data:image/jpeg;base64,AAAA", "not-a-data-url"])
    sent = client.chat.sent[0]
    assert sent[0].text == "Read a.txt"
    assert sent[1].inline_data.mime_type == "image/jpeg"
    assert len(sent) == 2
    assert turn.text == "Looking"
    assert turn.tool_calls == [ToolCall(name="read_file", args={"path": "a.txt"}, call_id="fc-1")]

    final = await adapter.send_tool_results([ToolOutcome(call=turn.tool_calls[0], result="contents")])
    response_part = client.chat.sent[1][0]
    assert response_part.function_response.name == "read_file"
    assert response_part.function_response.id == "fc-1"
    assert response_part.function_response.response == {"result": "contents"}
    assert final.text == "Here you go"
    assert final.images == [to_data_url("image/png", b"img")]


@pytest.mark.asyncio
async def test_gemini_adapter_skips_thought_parts_and_handles_empty_candidates():
    thought = gemini_text("thinking...")
    thought.thought = True
    client = FakeGeminiClient(chat_responses=[gemini_response(thought, gemini_text("answer")), object()])
    adapter = GeminiChatAdapter(client, "gemini-2.5-flash", "sys", [])
    assert (await adapter.send_user("q")).text == "answer"
    empty = await adapter.send_user("again")
    assert empty.text == ""
    assert empty.tool_calls == []


def test_factory_picks_adapter_by_provider():
    gemini_clients = []

    def gemini_factory(key):
        client = FakeGeminiClient()
        gemini_clients.append((key, client))
        return client

    factory = AdapterFactory(RecordingChatClient([]), gemini_client_factory=gemini_factory)
    google = Credential(id="g", provider="google", secret="g-key")
    groq = Credential(id="q", provider="groq", secret="q-key")

    adapter = factory.create(google, "gemini-2.5-flash", "sys", [])
    assert isinstance(adapter, GeminiChatAdapter)
    assert gemini_clients[0][0] == "g-key"
    assert gemini_clients[0][1].create_kwargs["config"].tools

    adapter = factory.create(groq, "llama", "sys", [], with_tools=False)
    assert isinstance(adapter, OpenAIChatAdapter)
    assert adapter.tools is None

    with pytest.raises(ProviderError):
        factory.create(Credential(id="p", provider="puter", secret="x"), "gpt-4o", "sys", [])
