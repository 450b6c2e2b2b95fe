"""Self-hosted backend on a local Ollama server via LangChain.

Text only: screenshots are counted in the prompt but never sent. The
analyze call asks Ollama for JSON-formatted output; the repair parser
still runs because local models drift from the schema.
"""

import structlog
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_ollama import ChatOllama

from aegisops.api.schemas import IncidentReport
from aegisops.backends.base import Backend
from aegisops.backends.prompts import (
    ANALYZE_SYSTEM_PROMPT,
    FOLLOW_UP_SYSTEM_PROMPT,
    build_analyze_prompt,
    build_incident_context,
)
from aegisops.core.normalizer import AnalyzeRequest, ChatTurn
from aegisops.core.repair import parse_report

logger = structlog.get_logger(__name__)


def _content_text(message: BaseMessage) -> str:
    content = message.content
    if isinstance(content, list):
        content = "".join(part if isinstance(part, str) else str(part.get("text", "")) for part in content)
    return (content or "").strip()


class OllamaBackend(Backend):
    """Local model through langchain-ollama's ChatOllama."""

    name = "ollama"

    def __init__(self, base_url: str, model: str, temperature: float = 0.2):
        super().__init__(model)
        self.base_url = base_url
        self.json_llm = ChatOllama(model=model, base_url=base_url, temperature=temperature, format="json")
        self.chat_llm = ChatOllama(model=model, base_url=base_url, temperature=temperature)

    async def analyze(self, request: AnalyzeRequest) -> IncidentReport:
        messages = [
            SystemMessage(content=ANALYZE_SYSTEM_PROMPT),
            HumanMessage(content=build_analyze_prompt(request, images_visible=False)),
        ]
        logger.debug("ollama.analyze", model=self.model, base_url=self.base_url)
        response = await self.json_llm.ainvoke(messages)
        return parse_report(_content_text(response))

    async def follow_up(
        self,
        report: IncidentReport,
        history: list[ChatTurn],
        question: str,
        enable_grounding: bool = False,
    ) -> str:
        messages: list[BaseMessage] = [
            SystemMessage(content=FOLLOW_UP_SYSTEM_PROMPT),
            HumanMessage(content=build_incident_context(report)),
            AIMessage(content="Understood. Ask me anything about this incident."),
        ]
        for turn in history:
            if turn.role == "user":
                messages.append(HumanMessage(content=turn.content))
            elif turn.role == "assistant":
                messages.append(AIMessage(content=turn.content))
        messages.append(HumanMessage(content=question))

        response = await self.chat_llm.ainvoke(messages)
        return _content_text(response)
