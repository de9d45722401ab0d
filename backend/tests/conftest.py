import json
import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from streamgate.database import build_engine, build_session_factory, init_db
from streamgate.main import app, configure_state
from streamgate.services.conversation_store import ConversationStore
from streamgate.services.llm_service import StreamEnd, TextDelta, estimate_tokens
from streamgate.services.search_service import SearchResult
from streamgate.utils.locks import GenerationLocks
from streamgate.utils.security import create_access_token


class FakeProvider:
    """Scripted model provider.

    Each call to stream_completion plays the next script: strings become
    text deltas, other provider events pass through, exceptions are raised.
    """

    def __init__(self, scripts=None):
        self.scripts = list(scripts or [])
        self.calls = []
        self.model_ids = []

    async def stream_completion(self, messages, tools=None, **kwargs):
        self.calls.append({"messages": [dict(m) for m in messages], "tools": tools})
        script = self.scripts.pop(0) if self.scripts else ["OK"]
        produced = ""
        for item in script:
            if isinstance(item, BaseException):
                raise item
            if isinstance(item, str):
                produced += item
                yield TextDelta(item)
            else:
                yield item
        yield StreamEnd(estimate_tokens(produced))


class FakeSearch:
    def __init__(self, results=None, error=None):
        self.results = results if results is not None else [
            SearchResult(title="Python", url="https://python.org", snippet="The Python language"),
            SearchResult(title="PyPI", url="https://pypi.org", snippet="Package index"),
        ]
        self.error = error
        self.queries = []

    async def search(self, query, num_results=10):
        self.queries.append((query, num_results))
        if self.error is not None:
            raise self.error
        return list(self.results)


def parse_events(body: str):
    return [json.loads(line[len("data: "):]) for line in body.splitlines() if line.startswith("data: ")]


def auth_headers(user_id="user-1", tier="pro", role=None):
    claims = {"sub": user_id, "tier": tier}
    if role:
        claims["role"] = role
    return {"Authorization": f"Bearer {create_access_token(claims)}"}


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def search():
    return FakeSearch()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def store(session_factory):
    async with session_factory() as session:
        yield ConversationStore(session)


@pytest.fixture
def locks():
    return GenerationLocks()


@pytest_asyncio.fixture
async def client(session_factory, provider, search, locks):
    def llm_factory(model_id):
        provider.model_ids.append(model_id)
        return provider

    configure_state(app, session_factory, llm_factory=llm_factory, search_service=search, locks=locks)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", headers=auth_headers()) as c:
        yield c
