"""
LlmAgent — a named persona bound to a JorElAgentManager.

An agent owns a system message template, the names of the tools it may
call and the agents it may delegate or transfer to. Names are resolved
against the manager on every access, so the agent never holds another
agent or tool directly.

Template placeholders:
    {{delegates}}  one delegate_template line per allowed delegate
    {{documents}}  the agent's document collection
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, Literal, Union

from jorel.agents.validation import (
    DEFAULT_DELEGATE_TEMPLATE,
    validate_agent_name,
    validate_delegate_template,
    validate_system_message_template,
)
from jorel.core.errors import AgentError
from jorel.documents import LlmDocument, LlmDocumentCollection
from jorel.tools.tool import LlmTool

if TYPE_CHECKING:
    from jorel.agents.manager import JorElAgentManager

logger = logging.getLogger(__name__)

DelegationKind = Literal["delegate", "transfer"]


@dataclass(frozen=True)
class LlmAgentDefinition:
    """Plain-data description of an agent."""

    name: str
    description: str
    system_message_template: str
    model: str | None = None
    temperature: float | None = None
    response_type: Literal["text", "json"] = "text"
    allowed_tools: tuple[str, ...] = ()
    can_delegate_to: tuple[str, ...] = ()
    can_transfer_to: tuple[str, ...] = ()
    delegate_template: str | None = None
    documents: tuple[dict, ...] = field(default=())

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "system_message_template": self.system_message_template,
            "model": self.model,
            "temperature": self.temperature,
            "response_type": self.response_type,
            "allowed_tools": list(self.allowed_tools),
            "can_delegate_to": list(self.can_delegate_to),
            "can_transfer_to": list(self.can_transfer_to),
            "delegate_template": self.delegate_template,
            "documents": [dict(document) for document in self.documents],
        }

    @classmethod
    def from_dict(cls, data: dict) -> LlmAgentDefinition:
        return cls(
            name=data["name"],
            description=data.get("description", ""),
            system_message_template=data["system_message_template"],
            model=data.get("model"),
            temperature=data.get("temperature"),
            response_type=data.get("response_type") or "text",
            allowed_tools=tuple(data.get("allowed_tools") or ()),
            can_delegate_to=tuple(data.get("can_delegate_to") or ()),
            can_transfer_to=tuple(data.get("can_transfer_to") or ()),
            delegate_template=data.get("delegate_template"),
            documents=tuple(data.get("documents") or ()),
        )


AgentLike = Union["LlmAgent", LlmAgentDefinition, dict]


class LlmAgent:
    """A registered agent. Build it through JorElAgentManager.add_agent."""

    def __init__(
        self,
        definition: LlmAgentDefinition | dict,
        manager: JorElAgentManager,
        documents: LlmDocumentCollection | Iterable[LlmDocument | dict] | None = None,
    ):
        if isinstance(definition, dict):
            definition = LlmAgentDefinition.from_dict(definition)

        self.name = validate_agent_name(definition.name)
        self.description = definition.description
        self.model = definition.model
        self.temperature = definition.temperature
        if definition.response_type not in ("text", "json"):
            raise AgentError(self.name, f"unknown response type {definition.response_type}")
        self.response_type = definition.response_type
        self.system_message_template = validate_system_message_template(
            definition.system_message_template
        )
        self.delegate_template = (
            validate_delegate_template(definition.delegate_template)
            if definition.delegate_template
            else DEFAULT_DELEGATE_TEMPLATE
        )

        if isinstance(documents, LlmDocumentCollection):
            self.documents = documents
        else:
            self.documents = LlmDocumentCollection(documents or definition.documents)

        self._allowed_tools: dict[str, None] = dict.fromkeys(definition.allowed_tools)
        self._allowed_delegates: dict[str, None] = dict.fromkeys(definition.can_delegate_to)
        self._allowed_transfers: dict[str, None] = dict.fromkeys(definition.can_transfer_to)

        if self.name in self._allowed_delegates or self.name in self._allowed_transfers:
            raise AgentError(self.name, "An agent cannot delegate to itself")

        self._manager = manager

    # --- Allowed names ---

    @property
    def allowed_tool_names(self) -> list[str]:
        return list(self._allowed_tools)

    @property
    def allowed_delegate_names(self) -> list[str]:
        return list(self._allowed_delegates)

    @property
    def allowed_transfer_names(self) -> list[str]:
        return list(self._allowed_transfers)

    # --- Resolved against the manager ---

    @property
    def available_tools(self) -> list[LlmTool]:
        tools = []
        for tool_name in self._allowed_tools:
            tool = self._manager.tools.get_tool(tool_name)
            if tool is None:
                raise AgentError(self.name, f"Tool with name {tool_name} does not exist")
            tools.append(tool)
        return tools

    @property
    def available_delegate_agents(self) -> list[LlmAgent]:
        return [self._resolve(name, "Delegate") for name in self._allowed_delegates]

    @property
    def available_transfer_agents(self) -> list[LlmAgent]:
        return [self._resolve(name, "Transfer") for name in self._allowed_transfers]

    def _resolve(self, agent_name: str, label: str) -> LlmAgent:
        agent = self._manager.get_agent(agent_name)
        if agent is None:
            raise AgentError(self.name, f"{label} agent with name {agent_name} does not exist")
        return agent

    # --- Rendering ---

    @property
    def system_message(self) -> str:
        delegates = "\n".join(
            agent.system_message_representation for agent in self.available_delegate_agents
        )
        return self.system_message_template.replace("{{delegates}}", delegates).replace(
            "{{documents}}", self.documents.system_message_representation
        )

    @property
    def system_message_representation(self) -> str:
        """How this agent is introduced in a delegator's system message."""
        return self.delegate_template.replace("{{name}}", self.name).replace(
            "{{description}}", self.description
        )

    @property
    def definition(self) -> LlmAgentDefinition:
        return LlmAgentDefinition(
            name=self.name,
            description=self.description,
            system_message_template=self.system_message_template,
            model=self.model,
            temperature=self.temperature,
            response_type=self.response_type,
            allowed_tools=tuple(self._allowed_tools),
            can_delegate_to=tuple(self._allowed_delegates),
            can_transfer_to=tuple(self._allowed_transfers),
            delegate_template=self.delegate_template,
            documents=tuple(self.documents.definition),
        )

    # --- Delegation ---

    def get_delegate(self, agent_name: str, kind: DelegationKind = "delegate") -> LlmAgent:
        """Resolve an allowed delegate or transfer target. Raises AgentError."""
        if not agent_name:
            raise AgentError(self.name, "target agent name cannot be empty")
        if agent_name == self.name:
            raise AgentError(self.name, f"cannot {kind} to itself")

        allowed = self._allowed_delegates if kind == "delegate" else self._allowed_transfers
        if agent_name not in allowed:
            raise AgentError(self.name, f"not allowed to {kind} to {agent_name}")

        agent = self._manager.get_agent(agent_name)
        if agent is None:
            raise AgentError(self.name, f"Unable to find {kind} agent with name {agent_name}")
        return agent

    def find_delegate(self, agent_name: str, kind: DelegationKind = "delegate") -> LlmAgent | None:
        """Like get_delegate, but None when the target is not available."""
        try:
            return self.get_delegate(agent_name, kind)
        except AgentError as e:
            logger.debug(str(e))
            return None

    def add_delegate(self, agent: AgentLike | str, kind: DelegationKind = "delegate") -> LlmAgent:
        """Allow delegating (or transferring) to `agent`.

        A definition is registered with the manager first if needed. A bare
        name must already be registered. Direct A <-> B delegation cycles are
        rejected; longer cycles are not detected.
        """
        if isinstance(agent, str):
            agent_name = agent
        elif isinstance(agent, dict):
            agent_name = agent["name"]
        else:
            agent_name = agent.name

        if agent_name == self.name:
            raise AgentError(self.name, "An agent cannot delegate to itself")

        registered = self._manager.get_agent(agent_name)
        if registered is None:
            if isinstance(agent, str):
                raise AgentError(
                    self.name,
                    f"Unable to add delegate. Agent with name {agent_name} does not exist",
                )
            registered = self._manager.add_agent(agent)

        if kind == "delegate":
            if self.name in registered.allowed_delegate_names:
                raise AgentError(
                    self.name,
                    f"Circular delegation detected between {self.name} and {registered.name}",
                )
            self._allowed_delegates.setdefault(agent_name)
        else:
            self._allowed_transfers.setdefault(agent_name)

        logger.debug(f"Agent {self.name} may now {kind} to {agent_name}")
        return registered

    def remove_delegate(self, agent: LlmAgent | str) -> None:
        """Drop `agent` from both the delegate and the transfer lists."""
        agent_name = agent if isinstance(agent, str) else agent.name
        self._allowed_delegates.pop(agent_name, None)
        self._allowed_transfers.pop(agent_name, None)

    # --- Tools ---

    def add_tool_access(self, tool: LlmTool | dict | str) -> None:
        """Allow a tool. A tool instance or config is registered if unknown."""
        if isinstance(tool, str):
            tool_name = tool
        elif isinstance(tool, dict):
            tool_name = tool["name"]
        else:
            tool_name = tool.name

        if self._manager.tools.get_tool(tool_name) is None:
            if isinstance(tool, str):
                raise AgentError(
                    self.name, f"Unable to add tool. Tool with name {tool_name} does not exist"
                )
            self._manager.tools.register_tool(tool)
        self._allowed_tools.setdefault(tool_name)

    def remove_tool_access(self, tool: LlmTool | str) -> None:
        tool_name = tool if isinstance(tool, str) else tool.name
        self._allowed_tools.pop(tool_name, None)

    def set_as_default(self) -> None:
        self._manager.default_agent_id = self.name

    def __repr__(self) -> str:
        return f"<LlmAgent:{self.name}>"
