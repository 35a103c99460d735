import logging
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from promptops.crud.ai_model import ai_model_crud, CRUDAIModel
from promptops.models.ai_model import AIModel
from promptops.schemas.ai_model import AIModelCreate, ModelTierEnum

logger = logging.getLogger(__name__)


def _model(id: str, name: str, provider: str, tier: ModelTierEnum, enabled: bool = True, **extra) -> AIModelCreate:
    return AIModelCreate(id=id, name=name, provider=provider, tier=tier, enabled=enabled, **extra)


FREE, PRO, TEAM, ENTERPRISE = ModelTierEnum.FREE, ModelTierEnum.PRO, ModelTierEnum.TEAM, ModelTierEnum.ENTERPRISE

DEFAULT_MODELS: List[AIModelCreate] = [
    # Free tier: inexpensive models, short prompts
    _model("deepseek-chat-v2", "DeepSeek Chat V2", "DeepSeek", FREE, max_prompt_length=2000, api_key_env_var="DEEPSEEK_API_KEY"),
    _model("deepseek-r1", "DeepSeek R1", "DeepSeek", FREE, max_prompt_length=2000, api_key_env_var="DEEPSEEK_API_KEY"),
    _model("claude-3-haiku", "Claude 3 Haiku", "Anthropic", FREE, enabled=False, max_prompt_length=2000, api_key_env_var="ANTHROPIC_API_KEY"),
    _model("claude-3.5-sonnet", "Claude 3.5 Sonnet", "Anthropic", FREE, max_prompt_length=2000, api_key_env_var="ANTHROPIC_API_KEY"),
    _model("gpt-4o-mini", "GPT-4o Mini", "OpenAI", FREE, max_prompt_length=2000, api_key_env_var="OPENAI_API_KEY"),
    _model("mistral-small", "Mistral Small", "Mistral AI", FREE, enabled=False, max_prompt_length=2000, api_key_env_var="MISTRAL_API_KEY"),
    _model("mixtral-8x7b", "Mixtral 8x7B", "Mistral AI", FREE, enabled=False, max_prompt_length=2000, api_key_env_var="MISTRAL_API_KEY"),
    _model("llama-3-8b", "LLaMA 3 8B", "Meta", FREE, max_prompt_length=2000, api_key_env_var="META_API_KEY"),
    _model("gemini-1.5-flash", "Gemini 1.5 Flash", "Google", FREE, max_prompt_length=2000, api_key_env_var="GEMINI_API_KEY"),
    # Pro tier
    _model("claude-4-sonnet", "Claude 4 Sonnet", "Anthropic", PRO, enabled=False, api_key_env_var="ANTHROPIC_API_KEY"),
    _model("gpt-4o", "GPT-4o", "OpenAI", PRO, api_key_env_var="OPENAI_API_KEY"),
    _model("mistral-large", "Mistral Large", "Mistral AI", PRO, enabled=False, api_key_env_var="MISTRAL_API_KEY"),
    _model("llama-3-70b", "LLaMA 3 70B", "Meta", PRO, api_key_env_var="META_API_KEY"),
    _model("deepseek-r1-pro", "DeepSeek R1 Pro", "DeepSeek", PRO, api_key_env_var="DEEPSEEK_API_KEY"),
    _model("deepseek-coder", "DeepSeek Coder", "DeepSeek", PRO, api_key_env_var="DEEPSEEK_API_KEY"),
    _model("gpt-5-nano", "GPT-5 Nano", "OpenAI", PRO, enabled=False, coming_soon=True, api_key_env_var="OPENAI_API_KEY"),
    # Team tier
    _model("claude-3-opus", "Claude 3 Opus", "Anthropic", TEAM, api_key_env_var="ANTHROPIC_API_KEY"),
    _model("gpt-4-turbo", "GPT-4 Turbo", "OpenAI", TEAM, api_key_env_var="OPENAI_API_KEY"),
    _model("gemini-1.5-pro", "Gemini 1.5 Pro", "Google", TEAM, api_key_env_var="GEMINI_API_KEY"),
    _model("gpt-5-mini", "GPT-5 Mini", "OpenAI", TEAM, enabled=False, coming_soon=True, api_key_env_var="OPENAI_API_KEY"),
    # Enterprise tier
    _model("gpt-4o-high-context", "GPT-4o High-Context", "OpenAI", ENTERPRISE, api_key_env_var="OPENAI_API_KEY"),
    _model("gemini-1.5-flash-high-context", "Gemini 1.5 Flash (High Context)", "Google", ENTERPRISE, api_key_env_var="GEMINI_API_KEY"),
    _model("command-r-plus", "Command R+", "Cohere", ENTERPRISE, api_key_env_var="COHERE_API_KEY"),
    _model("gpt-5", "GPT-5", "OpenAI", ENTERPRISE, enabled=False, coming_soon=True, api_key_env_var="OPENAI_API_KEY"),
    _model("claude-4-opus", "Claude 4 Opus", "Anthropic", ENTERPRISE, enabled=False, coming_soon=True, api_key_env_var="ANTHROPIC_API_KEY"),
]


class ModelRegistry:
    """Read-only view of the ai_models table used by the entitlement engine"""

    def __init__(self, store: CRUDAIModel = ai_model_crud):
        self.store = store

    async def lookup(self, db: AsyncSession, model_id: str) -> Optional[AIModel]:
        if not model_id:
            return None
        return await self.store.get_model(db, model_id)

    async def list_models(self, db: AsyncSession) -> List[AIModel]:
        return await self.store.list_models(db)

    async def seed_defaults(self, db: AsyncSession) -> int:
        inserted = await self.store.seed(db, DEFAULT_MODELS)
        if inserted:
            logger.info(f"🌱 Seeded {inserted} AI models into the registry")
        return inserted
