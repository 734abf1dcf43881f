"""Triage: classify a user message into one specialist agent."""

import json
import logging

from crm_assistant.adapters.vendor_adapter_openai import call_openai_chat
from crm_assistant.infra.config import config
from crm_assistant.infra.error_handler import RoutingFailure
from crm_assistant.infra.metrics import routing_decisions_total
from crm_assistant.infra.timeout import TRIAGE_TIMEOUT
from crm_assistant.models.context import ExecutionContext
from crm_assistant.services.agents import SPECIALISTS, AgentName, resolve_agent_name

logger = logging.getLogger(__name__)

_STRIP_CHARS = " \t\r\n\"'`.,;:!?"


def triage_prompt() -> str:
    lines = [
        "You route messages of a business assistant to exactly one specialist.",
        "Specialists:",
    ]
    for agent in SPECIALISTS.values():
        lines.append(f"- {agent.name.value}: {agent.description}")
    lines.append("")
    lines.append(
        'Respond with JSON only, in the form {"agent": "<name>"}, using one of the names above. '
        "Use general when no specialist clearly fits."
    )
    return "\n".join(lines)


def _routing_candidate(raw: str) -> str:
    """Normalised agent name from {"agent": "..."} JSON or bare text."""
    text = (raw or "").strip()
    if text.startswith("```"):
        lines = text.split("\n")
        text = "\n".join(lines[1:-1]) if len(lines) > 2 else text

    candidate = text
    try:
        data = json.loads(text)
    except ValueError:
        data = None
    if isinstance(data, dict):
        candidate = str(data.get("agent") or "")
    elif isinstance(data, str):
        candidate = data

    return candidate.strip(_STRIP_CHARS).lower()


def parse_routing_output(raw: str) -> AgentName:
    """Turn the classifier output into an AgentName; anything unrecognised routes to general."""
    return resolve_agent_name(_routing_candidate(raw)) or AgentName.GENERAL


async def classify(message: str, ctx: ExecutionContext) -> AgentName:
    """
    Pick the specialist for a message. Never raises.

    Any provider failure (missing key, timeout, open circuit) or an
    unrecognised answer falls back to general.
    """
    messages = [
        {"role": "system", "content": triage_prompt()},
        {"role": "user", "content": message},
    ]
    try:
        result = await call_openai_chat(
            messages,
            model=config.TRIAGE_MODEL,
            purpose="triage",
            response_format={"type": "json_object"},
            temperature=0,
            timeout=TRIAGE_TIMEOUT,
            max_retries=1,
        )
    except Exception as e:
        failure = RoutingFailure(str(e) or type(e).__name__)
        logger.warning(
            f"Triage failed, routing to general: {failure.message}",
            extra={"tenant_id": ctx.tenant_id, "conversation_id": ctx.conversation_id},
        )
        routing_decisions_total.labels(agent=AgentName.GENERAL.value, outcome="fallback").inc()
        return AgentName.GENERAL

    agent = resolve_agent_name(_routing_candidate(result.content))
    if agent is None:
        logger.warning(
            f"Unrecognised triage output, routing to general: {(result.content or '')[:100]!r}",
            extra={"tenant_id": ctx.tenant_id, "conversation_id": ctx.conversation_id},
        )
        routing_decisions_total.labels(agent=AgentName.GENERAL.value, outcome="fallback").inc()
        return AgentName.GENERAL

    routing_decisions_total.labels(agent=agent.value, outcome="classified").inc()
    logger.info(
        f"Routed message to {agent.value}",
        extra={"tenant_id": ctx.tenant_id, "conversation_id": ctx.conversation_id, "agent": agent.value},
    )
    return agent
