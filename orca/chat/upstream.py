import logging
import re
from typing import Dict, Iterator, List, Optional
from langchain_community.llms import Ollama
from orca.config import MODEL_NAME, OLLAMA_BASE_URL, OLLAMA_TIMEOUT, SYSTEM_PROMPT
from orca.errors import UpstreamError
from orca.models import Role

logger = logging.getLogger(__name__)

STATUS_PATTERN = re.compile(r"status code (\d{3})")


def build_prompt(history: List[Dict[str, str]], system_prompt: Optional[str] = None) -> str:  # renders the stored history as a chat transcript
    lines = [
        f"{'Assistant' if item['role'] == Role.ASSISTANT.value else 'User'}: {item['content']}"
        for item in history
    ]
    prompt = "\n".join(lines + ["Assistant: "])
    if system_prompt:
        prompt = f"{system_prompt}\n\n{prompt}"
    return prompt


def status_of(exc: Exception) -> Optional[int]:
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    if status is not None:
        return status
    # Ollama reports HTTP failures as "... status code 404 ..." in the message
    match = STATUS_PATTERN.search(str(exc))
    return int(match.group(1)) if match else None


class UpstreamCompletionClient:
    """Streams a completion from the language model provider.

    ``stream`` returns a one-shot iterator of text fragments. Whatever the
    provider sent before a failure is yielded first; the failure surfaces as
    ``UpstreamError`` afterwards. Nothing is retried here.
    """

    def __init__(self, llm=None, system_prompt: Optional[str] = SYSTEM_PROMPT):
        self.llm = llm if llm is not None else Ollama(
            model=MODEL_NAME,
            base_url=OLLAMA_BASE_URL,
            timeout=OLLAMA_TIMEOUT,
        )
        self.system_prompt = system_prompt

    def stream(self, history: List[Dict[str, str]]) -> Iterator[str]:
        prompt = build_prompt(history, self.system_prompt)
        logger.info(f"Upstream stream opened: {len(history)} messages, {len(prompt)} chars")
        try:
            chunks = self.llm.stream(prompt)
        except Exception as e:
            raise UpstreamError(str(e), status_of(e)) from e
        try:
            for chunk in chunks:
                if chunk:
                    yield chunk
        except Exception as e:
            logger.warning(f"Upstream stream interrupted: {e}")
            raise UpstreamError(str(e), status_of(e)) from e
        finally:
            close = getattr(chunks, "close", None)
            if close is not None:
                close()
