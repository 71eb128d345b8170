import asyncio
import logging
import traceback
from typing import Optional

import httpx
from openai import OpenAI

from ..config import settings

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are SQLCoder, an expert at converting natural language queries to SQL.
You must return ONLY valid PostgreSQL SQL queries without any explanation or markdown.
Always use the schema prefix 'tas_demo.' for all tables.
If you cannot generate a valid query, return NULL."""


def build_sql_prompt(utterance: str, context: str, schema: str) -> str:
    """
    构建SQL生成提示词

    Args:
        utterance: 用户语句 (已经过上下文改写)
        context: 会话上下文文本
        schema: 数据库结构描述

    Returns:
        提示词文本
    """
    return f"""{schema}

Previous conversation context:
{context or "(none)"}

User query: {utterance}

Generate a PostgreSQL query to answer this question. Use appropriate JOINs, aggregations, and filters as needed.
"""


class LLMQueryResolver:
    """
    使用LLM把无法匹配的语句转换为SQL (可选的后备解析器)

    支持两种接口:
    - "openai": OpenAI兼容的chat completions接口 (DeepSeek、Ollama的 /v1 等)
    - "ollama": Ollama原生的 /api/generate 接口
    任何错误都返回None，由调用方退回帮助文本。
    """

    def __init__(self, provider: str = "ollama", base_url: str = "http://localhost:11434",
                 model: str = "sqlcoder:7b", api_key: str = "", timeout: float = 60.0):
        if provider not in ("openai", "ollama"):
            raise ValueError(f"Unsupported LLM provider: {provider}")
        self.provider = provider
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.timeout = timeout

    async def resolve(self, utterance: str, context: str, schema: str) -> Optional[str]:
        prompt = build_sql_prompt(utterance, context, schema)
        try:
            if self.provider == "openai":
                content = await asyncio.to_thread(self._chat_completion, prompt)
            else:
                content = await self._ollama_generate(prompt)
        except Exception as e:
            logger.error(f"LLM {self.provider} call failed: {e}")
            logger.debug(traceback.format_exc())
            return None

        content = (content or "").strip()
        if not content or content.upper() == "NULL":
            logger.info("LLM returned no query")
            return None
        return content

    def _chat_completion(self, prompt: str) -> str:
        client = OpenAI(
            api_key=self.api_key or "ollama",  # 本地Ollama不校验密钥，但SDK要求非空
            base_url=self.base_url,
            timeout=self.timeout
        )
        response = client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt}
            ],
            temperature=0,
            max_tokens=1024
        )
        return response.choices[0].message.content

    async def _ollama_generate(self, prompt: str) -> str:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                f"{self.base_url}/api/generate",
                json={
                    "model": self.model,
                    "system": SYSTEM_PROMPT,
                    "prompt": prompt,
                    "stream": False,
                    "options": {"temperature": 0}
                }
            )
            response.raise_for_status()
            return response.json().get("response", "")


def build_resolver_from_settings() -> Optional[LLMQueryResolver]:
    """按配置创建后备解析器；未启用时返回None"""
    if not settings.LLM_FALLBACK_ENABLED:
        logger.info("LLM fallback disabled")
        return None
    logger.info(f"LLM fallback enabled: provider={settings.LLM_PROVIDER}, model={settings.LLM_MODEL}")
    return LLMQueryResolver(
        provider=settings.LLM_PROVIDER,
        base_url=settings.LLM_BASE_URL,
        model=settings.LLM_MODEL,
        api_key=settings.LLM_API_KEY,
        timeout=settings.LLM_TIMEOUT
    )
