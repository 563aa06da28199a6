from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, List, Optional, Protocol

import structlog
from openai import AsyncOpenAI, OpenAIError

from studygen.config import PipelineConfig, ServiceSettings, get_config, get_settings
from studygen.services.errors import GenerationError

logger = structlog.get_logger()


@dataclass(frozen=True)
class Prompt:
    system: str
    user: str


@dataclass(frozen=True)
class ToolSchema:
    name: str
    description: str
    parameters: Dict[str, Any]

    def as_tool(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {"name": self.name, "description": self.description, "parameters": self.parameters},
        }


class GenerativeClient(Protocol):
    async def generate_structured(self, prompt: Prompt, schema: ToolSchema) -> Dict[str, Any]:
        """Return the schema-shaped object or raise GenerationError."""
        ...


# -------------------- SCHEMAS --------------------

FLASHCARD_TOOL = ToolSchema(
    name="create_flashcards",
    description="Create a set of flashcards from document content",
    parameters={
        "type": "object",
        "properties": {
            "flashcards": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "question": {"type": "string", "description": "The question or prompt"},
                        "answer": {"type": "string", "description": "The answer or explanation"},
                        "difficulty": {"type": "string", "enum": ["easy", "medium", "hard"]},
                    },
                    "required": ["question", "answer", "difficulty"],
                },
            }
        },
        "required": ["flashcards"],
    },
)

QUIZ_TOOL = ToolSchema(
    name="create_quiz",
    description="Create a quiz with multiple choice questions",
    parameters={
        "type": "object",
        "properties": {
            "questions": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "question": {"type": "string"},
                        "options": {"type": "array", "items": {"type": "string"}, "minItems": 4, "maxItems": 4},
                        "correctIndex": {"type": "integer", "minimum": 0, "maximum": 3},
                        "explanation": {"type": "string"},
                    },
                    "required": ["question", "options", "correctIndex", "explanation"],
                },
                "minItems": 1,
            }
        },
        "required": ["questions"],
    },
)

DISTRACTOR_TOOL = ToolSchema(
    name="create_distractors",
    description="Create plausible but incorrect answer options for one question",
    parameters={
        "type": "object",
        "properties": {
            "distractors": {"type": "array", "items": {"type": "string"}, "minItems": 3},
        },
        "required": ["distractors"],
    },
)


# -------------------- OPENAI CLIENT --------------------

def _get_client(settings: ServiceSettings) -> AsyncOpenAI:
    if not settings.openai_api_key:
        raise GenerationError("OPENAI_API_KEY is not set; the generation service is not configured.")
    return AsyncOpenAI(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        timeout=settings.request_timeout,
    )


def _parse_tool_call(response: Any, tool_name: str) -> Dict[str, Any]:
    try:
        message = response.choices[0].message
    except (AttributeError, IndexError) as e:
        raise GenerationError(f"Model returned no choices: {e}")
    tool_calls = getattr(message, "tool_calls", None) or []
    call = next((c for c in tool_calls if c.function.name == tool_name), None)
    if call is None:
        raise GenerationError(f"Model did not return the expected {tool_name} call")
    try:
        data = json.loads(call.function.arguments)
    except (TypeError, json.JSONDecodeError) as e:
        raise GenerationError(f"Model returned malformed {tool_name} arguments: {e}")
    if not isinstance(data, dict):
        raise GenerationError(f"Model returned {tool_name} arguments that are not an object")
    return data


class OpenAIGenerativeClient:
    """Schema-constrained generation through forced function calling."""

    def __init__(self, settings: ServiceSettings, config: PipelineConfig, client: Optional[AsyncOpenAI] = None):
        self.settings = settings
        self.config = config
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = _get_client(self.settings)
        return self._client

    async def generate_structured(self, prompt: Prompt, schema: ToolSchema) -> Dict[str, Any]:
        try:
            response = await self.client.chat.completions.create(
                model=self.settings.generation_model,
                temperature=self.config.temperature,
                top_p=self.config.top_p,
                max_tokens=self.config.max_tokens,
                messages=[
                    {"role": "system", "content": prompt.system},
                    {"role": "user", "content": prompt.user},
                ],
                tools=[schema.as_tool()],
                tool_choice={"type": "function", "function": {"name": schema.name}},
            )
        except OpenAIError as e:
            logger.error("generation_request_failed", tool=schema.name, error=str(e))
            raise GenerationError(f"Generation service error: {e}")
        data = _parse_tool_call(response, schema.name)
        logger.info("generation_completed", tool=schema.name, keys=sorted(data.keys()))
        return data


# -------------------- DOCUMENT READER --------------------

READER_INSTRUCTIONS = (
    "Extract all readable text from the attached document in reading order. "
    "Separate pages with a line containing only 'Page N'. "
    "Return only the document text, without commentary."
)


class ModelDocumentReader:
    """Reads binary documents (scanned PDFs included) by handing the file to the model."""

    def __init__(self, settings: ServiceSettings, client: Optional[AsyncOpenAI] = None):
        self.settings = settings
        self._client = client

    async def read_document(self, data_b64: str, mime_type: str = "application/pdf") -> str:
        content: List[Dict[str, Any]] = [
            {"type": "text", "text": READER_INSTRUCTIONS},
            {"type": "file", "file": {"filename": "document.pdf", "file_data": f"data:{mime_type};base64,{data_b64}"}},
        ]
        try:
            client = self._client or _get_client(self.settings)
            response = await client.chat.completions.create(
                model=self.settings.generation_model,
                temperature=0,
                messages=[{"role": "user", "content": content}],
            )
            text = response.choices[0].message.content or ""
        except (OpenAIError, GenerationError) as e:
            # the extractor turns an empty read into an actionable error
            logger.warning("document_reader_failed", error=str(e))
            return ""
        logger.info("document_reader_completed", length=len(text))
        return text


# -------------------- DEPENDENCIES --------------------

@lru_cache()
def get_generative_client() -> GenerativeClient:
    return OpenAIGenerativeClient(get_settings(), get_config())


def get_document_reader() -> Optional[ModelDocumentReader]:
    settings = get_settings()
    if not settings.document_reader_enabled:
        return None
    return ModelDocumentReader(settings)
