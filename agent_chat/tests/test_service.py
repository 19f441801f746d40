import httpx
import pytest

from agent_chat.api.service import ChatService
from agent_chat.config.settings import Settings
from agent_chat.domain.exceptions import ValidationError
from agent_chat.domain.models import UploadCandidate
from agent_chat.providers import create_client
from agent_chat.providers.agentspro_client import AgentsProClient
from agent_chat.providers.credentials import Credentials
from agent_chat.providers.registry import AgentRegistry


def _settings(**overrides) -> Settings:
    values = dict(
        auth_key="key",
        auth_secret="secret",
        agent_normal_qa="qa",
        agent_project_recommend="proj",
        agent_report_writing="report",
        coalesce_interval=0.01,
    )
    values.update(overrides)
    return Settings(**values)


def test_registry_routes_commands():
    registry = AgentRegistry.from_settings(_settings())
    assert registry.resolve(set()) == "qa"
    assert registry.resolve({"project-retrieval"}) == "proj"
    assert registry.resolve({"report", "project-retrieval"}) == "report"


@pytest.mark.asyncio
async def test_chat_stream_end_to_end():
    uploads, chats = [], []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/openapi/fs/upload":
            uploads.append(request)
            return httpx.Response(200, json={"code": 200, "data": "fid-1"})
        chats.append(request)
        body = (
            'data: {"content": "见下表", "chatId": 8}\n'
            'data: {"content": "\\n```table\\n|a|\\n```"}\n'
            'data: {"finish": true}\n'
        )
        return httpx.Response(200, content=body.encode("utf-8"))

    cfg = _settings()
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = AgentsProClient(Credentials("key", "secret"), base_url=cfg.base_url, client=http)
    service = ChatService(client=client, config=cfg)

    doc = UploadCandidate("data.csv", b"a,b")
    result = await service.chat_stream("给我表格", {"project-retrieval"}, [doc])
    await service.chat_stream("再来一次", {"project-retrieval"}, [doc])
    await http.aclose()

    assert len(uploads) == 1
    assert len(chats) == 2
    assert result.agent_id == "proj"
    assert result.active_artifact.title == "数据表格"
    assert result.cleaned_text == "见下表"
    state = service.get_chat_state("proj")
    assert state.chat_id == 8
    assert [f.file_id for f in state.files] == ["fid-1"]
    assert service.get_chat_state("qa").chat_id is None


def test_settings_base_url():
    assert _settings(api_env="prod").base_url == "https://lingda.agentspro.cn"
    assert _settings(api_base_url="http://localhost:9000/").base_url == "http://localhost:9000"
    assert _settings(upload_allowed_extensions=["PDF", ".Txt"]).upload_allowed_extensions == [".pdf", ".txt"]
    assert _settings(stream_stall_timeout=0).stream_stall_timeout is None


def test_service_requires_credentials():
    with pytest.raises(ValidationError) as exc:
        ChatService(config=_settings(auth_key=None))
    assert exc.value.code == "MISSING_CREDENTIALS"


@pytest.mark.asyncio
async def test_create_client_targets_configured_host():
    seen = []
    client = create_client(_settings(api_base_url="http://localhost:9000"))
    await client._client.aclose()
    client._client = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda r: seen.append(str(r.url)) or httpx.Response(200, json={"code": 0, "data": "x"}))
    )
    assert await client.upload(b"1", "a.txt") == "x"
    await client.aclose()
    assert seen == ["http://localhost:9000/openapi/fs/upload?returnType=id"]
