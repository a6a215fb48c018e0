from http import HTTPStatus
from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from bizdash.ai import SYSTEM_PROMPT, ChatService, convert_to_lc_messages, get_chat_service
from bizdash.main import app
from bizdash.schemas import ChatMessageIn


class FakeProviderError(Exception):
    def __init__(self, code):
        super().__init__(code)
        self.code = code


@pytest.fixture()
def use_chat_service():
    def _install(service: ChatService) -> ChatService:
        app.dependency_overrides[get_chat_service] = lambda: service
        return service

    return _install


def test_chat_without_api_key_is_unavailable(client, user_factory, auth_headers):
    response = client.post(
        "/api/chat", json={"prompt": "Hello"}, headers=auth_headers(user_factory())
    )
    assert response.status_code == HTTPStatus.SERVICE_UNAVAILABLE
    assert response.json()["success"] is False


def test_chat_status_without_api_key(client, user_factory, auth_headers):
    response = client.get("/api/chat/status", headers=auth_headers(user_factory()))

    data = response.json()["data"]
    assert data["available"] is False
    assert data["model"] == "gpt-3.5-turbo"


def test_chat_reply(client, user_factory, auth_headers, use_chat_service):
    use_chat_service(ChatService(FakeListChatModel(responses=["Sales are up 10%."]), "fake-model"))

    response = client.post(
        "/api/chat",
        json={"messages": [{"role": "user", "content": "How are sales?"}]},
        headers=auth_headers(user_factory()),
    )
    assert response.status_code == HTTPStatus.OK

    data = response.json()["data"]
    assert data["message"] == "Sales are up 10%."
    assert data["model"] == "fake-model"


def test_chat_prepends_system_prompt(client, demo_headers, use_chat_service):
    llm = MagicMock()
    llm.ainvoke = AsyncMock(return_value=MagicMock(content="ok", usage_metadata=None))
    use_chat_service(ChatService(llm, "fake-model"))

    response = client.post("/api/chat", json={"prompt": "Hi"}, headers=demo_headers)
    assert response.status_code == HTTPStatus.OK

    sent = llm.ainvoke.call_args.args[0]
    assert isinstance(sent[0], SystemMessage)
    assert sent[0].content == SYSTEM_PROMPT
    assert isinstance(sent[1], HumanMessage)
    assert sent[1].content == "Hi"


@pytest.mark.parametrize(
    "code, status",
    [
        ("insufficient_quota", HTTPStatus.PAYMENT_REQUIRED),
        ("rate_limit_exceeded", HTTPStatus.TOO_MANY_REQUESTS),
        ("server_error", HTTPStatus.INTERNAL_SERVER_ERROR),
    ],
)
def test_upstream_errors_are_translated(
    client, user_factory, auth_headers, use_chat_service, code, status
):
    llm = MagicMock()
    llm.ainvoke = AsyncMock(side_effect=FakeProviderError(code))
    use_chat_service(ChatService(llm, "fake-model"))

    response = client.post(
        "/api/chat", json={"prompt": "Hello"}, headers=auth_headers(user_factory())
    )
    assert response.status_code == status
    assert response.json()["success"] is False


def test_chat_requires_prompt_or_messages(client, user_factory, auth_headers):
    response = client.post("/api/chat", json={}, headers=auth_headers(user_factory()))
    assert response.status_code == HTTPStatus.BAD_REQUEST


def test_convert_to_lc_messages_keeps_order():
    converted = convert_to_lc_messages(
        [
            ChatMessageIn(role="user", content="one"),
            ChatMessageIn(role="assistant", content="two"),
        ]
    )
    assert [type(m).__name__ for m in converted] == ["SystemMessage", "HumanMessage", "AIMessage"]
