"""
Shared fixtures: an isolated database and storage directory, and a scripted
generative client that replays structured responses.
"""
import asyncio
import os
import tempfile

_TMP = tempfile.mkdtemp(prefix="studygen-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP, 'test.db')}"
os.environ["STORAGE_DIR"] = os.path.join(_TMP, "storage")
os.environ["RATE_LIMIT_ENABLED"] = "0"
os.environ.pop("OPENAI_API_KEY", None)

import pytest  # noqa: E402

from studygen.config import PipelineConfig  # noqa: E402
from studygen.services.errors import GenerationError  # noqa: E402


BIOLOGY_TEXT = (
    "Page 1\n"
    "The mitochondria is the powerhouse of the cell. Mitochondria produce ATP through cellular respiration. "
    "The inner membrane of the mitochondria holds the electron transport chain.\n"
    "Page 2\n"
    "Photosynthesis takes place in the chloroplast. Chloroplasts capture light energy and store it as glucose. "
    "Plants release oxygen as a product of photosynthesis.\n"
    "Page 3\n"
    "The nucleus stores the genetic material of the cell. DNA in the nucleus is copied during cell division. "
    "Ribosomes build proteins from amino acids.\n"
)


class FakeGenerativeClient:
    """Returns scripted payloads in order; an Exception entry is raised instead."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []

    async def generate_structured(self, prompt, schema):
        self.calls.append((prompt, schema))
        if not self.responses:
            raise GenerationError("No scripted response left")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def tool_names(self):
        return [schema.name for _, schema in self.calls]


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def config():
    return PipelineConfig()


@pytest.fixture
def biology_text():
    return BIOLOGY_TEXT
