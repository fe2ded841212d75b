"""Prompt texts for the planner, creative mode and agent environment."""

from typing import Sequence

from .schemas import AgentConfig

PLANNER_SYSTEM = "You are a project manager. Output JSON only."

PLANNER_PROMPT = """
You are a lead architect and project manager.
User Request: "{message}"

Available Agents:
{agents}

Your goal is to break down the User Request and assign specific tasks to the agents above.
Return a valid JSON object where keys are the Agent IDs and values are the specific instructions for them.
Example:
{{
  "agent_id_1": "Create the generic components...",
  "agent_id_2": "Write the unit tests for..."
}}
Do not output markdown, only the raw JSON.
"""

CREATIVE_SYSTEM = (
    "You are a creative AI assistant. You can generate text, answer questions, or generate images if requested. "
    "If the user asks for an image, the model will output it directly. Do not act as a coding agent."
)

PLANNING_INSTRUCTION_PREFIX = "[PLANNING INSTRUCTION]: "
DEFAULT_PLAN_INSTRUCTION = "Assist with the user request."
MAX_TURNS_SENTINEL = "Max turns reached"


def format_agent_roster(agents: Sequence[AgentConfig]) -> str:
    return "\n".join(f"- ID: {a.id}\n  Name: {a.name}\n  Role: {a.system_prompt}" for a in agents)


def build_plan_prompt(message: str, agents: Sequence[AgentConfig]) -> str:
    return PLANNER_PROMPT.format(message=message, agents=format_agent_roster(agents))


def build_system_instruction(agent: AgentConfig, environment: str) -> str:
    base = agent.system_prompt.strip()
    return f"{base}\n\n{environment}" if base else environment
