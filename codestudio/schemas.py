from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


ProviderId = Literal[
    "google",
    "groq",
    "huggingface",
    "mistral",
    "openrouter",
    "puter",
    "sambanova",
    "cerebras",
    "deepseek",
    "pollinations",
]
MessageRole = Literal["user", "model", "system"]
RunStatus = Literal["done", "aborted", "failed"]
ChatMode = Literal["code", "creative"]


class Credential(BaseModel):
    id: str
    provider: ProviderId
    secret: str = Field(default="", repr=False)
    alias: str = ""

    def to_safe_dict(self) -> dict:
        data = self.model_dump()
        if data.get("secret"):
            data["secret"] = "********"
        return data


class AgentConfig(BaseModel):
    id: str
    name: str
    credential_id: str
    model: str
    root_path: str = "."
    system_prompt: str = ""
    temperature: Optional[float] = None
    max_context_history: int = 10

    model_config = {"protected_namespaces": (), "frozen": True}


class ConversationMessage(BaseModel):
    role: MessageRole
    content: str = ""
    images: List[str] = Field(default_factory=list)
    timestamp: Optional[float] = None
    is_tool_output: bool = False
    tool_name: Optional[str] = None


class ToolCall(BaseModel):
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)
    call_id: str


class ToolOutcome(BaseModel):
    call: ToolCall
    result: Any = None


class ProviderTurn(BaseModel):
    text: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list)


class AgentRunResult(BaseModel):
    status: RunStatus
    text: str = ""
    turns: int = 0
    error: Optional[str] = None
    images: List[str] = Field(default_factory=list)


class SendMessageRequest(BaseModel):
    message: str
    agents: List[AgentConfig]
    credentials: List[Credential]
    images: List[str] = Field(default_factory=list)
    mode: ChatMode = "code"


class PlanRequest(BaseModel):
    message: str
    agents: List[AgentConfig]
    credential: Credential
    model: Optional[str] = None

    model_config = {"protected_namespaces": ()}


class ModelsRequest(BaseModel):
    provider: ProviderId
    secret: str = ""


class WriteFileRequest(BaseModel):
    path: str
    content: str
