"""GradeFoundry - AI Service

生成式文本服务 - OpenAI 兼容接口、重试机制、JSON 模式响应验证
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol

import httpx

from gradefoundry.core.config import settings
from gradefoundry.core.errors import AIServiceError

logger = logging.getLogger(__name__)


@dataclass
class GenerationConfig:
    """生成配置"""
    temperature: float = 0.3
    max_tokens: int = 4096
    top_p: float = 0.95
    max_retries: int = 3
    retry_delay: float = 1.0
    timeout: float = 120.0


@dataclass(frozen=True)
class TokenUsage:
    """Token 用量"""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class AIResponse:
    """生成结果"""
    content: str
    model: str
    usage: Optional[TokenUsage] = None


class TextGenerator(Protocol):
    """生成式文本能力（流水线依赖的窄接口，便于替换/测试）"""

    async def call(
        self,
        prompt: str,
        system_prompt: Optional[str],
        max_tokens: int,
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        json_mode: bool = False,
    ) -> AIResponse:
        ...


class AIService:
    """AI 服务（OpenAI 兼容 chat/completions）"""

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        generation_config: Optional[GenerationConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.LLM_BASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.LLM_API_KEY
        self.model = model or settings.LLM_MODEL
        self.generation_config = generation_config or GenerationConfig(
            temperature=settings.LLM_TEMPERATURE,
            max_retries=settings.LLM_MAX_RETRIES,
            timeout=settings.LLM_TIMEOUT_S,
        )
        self._transport = transport

    async def call(
        self,
        prompt: str,
        system_prompt: Optional[str],
        max_tokens: int,
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        json_mode: bool = False,
    ) -> AIResponse:
        """
        调用生成模型
        
        Args:
            prompt: 用户提示词
            system_prompt: 系统提示词
            max_tokens: token 上限
            model: 覆盖默认模型
            temperature: 覆盖默认温度
            json_mode: 约束输出为 JSON（返回内容保证可解析）
        """
        base = self.generation_config
        gen_config = GenerationConfig(
            temperature=base.temperature if temperature is None else temperature,
            max_tokens=max_tokens,
            top_p=base.top_p,
            max_retries=base.max_retries,
            retry_delay=base.retry_delay,
            timeout=base.timeout,
        )
        return await self.call_with_retry(
            prompt=prompt,
            system_prompt=system_prompt,
            gen_config=gen_config,
            model=model,
            json_mode=json_mode,
            validator=validate_json_response if json_mode else None,
        )

    async def call_with_retry(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        gen_config: Optional[GenerationConfig] = None,
        model: Optional[str] = None,
        json_mode: bool = False,
        validator: Optional[Callable[[str], bool]] = None,
    ) -> AIResponse:
        """
        带重试机制的 AI 调用
        
        Args:
            prompt: 用户提示词
            system_prompt: 系统提示词
            gen_config: 生成配置
            model: 模型名称
            json_mode: 是否请求 JSON 输出
            validator: 响应验证函数
        
        Returns:
            AIResponse
        
        Raises:
            AIServiceError: 重试次数用尽或验证失败
        """
        gen_config = gen_config or GenerationConfig()
        last_error: Optional[BaseException] = None
        
        for attempt in range(gen_config.max_retries):
            try:
                response = await self.call_openai_compatible(
                    prompt=prompt,
                    system_prompt=system_prompt,
                    gen_config=gen_config,
                    model=model,
                    json_mode=json_mode,
                )
                
                # 验证响应（如果提供了验证器）
                if validator and not validator(response.content):
                    logger.warning(f"AI 响应验证失败 (尝试 {attempt + 1}/{gen_config.max_retries})")
                    last_error = AIServiceError("响应验证失败")
                    continue
                
                return response
                
            except httpx.HTTPStatusError as e:
                logger.warning(f"AI API 错误 (尝试 {attempt + 1}/{gen_config.max_retries}): {e}")
                last_error = e
                if e.response.status_code == 429:  # Rate limit
                    await asyncio.sleep(gen_config.retry_delay * (attempt + 1))
                continue
                
            except httpx.TimeoutException as e:
                logger.warning(f"AI API 超时 (尝试 {attempt + 1}/{gen_config.max_retries})")
                last_error = e
                continue
                
            except AIServiceError:
                raise

            except Exception as e:
                logger.error(f"AI 调用未知错误: {e}")
                last_error = e
                break
        
        raise AIServiceError(f"AI 调用失败 (已重试 {gen_config.max_retries} 次): {last_error}")
    
    async def call_openai_compatible(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        gen_config: Optional[GenerationConfig] = None,
        model: Optional[str] = None,
        json_mode: bool = False,
    ) -> AIResponse:
        if not self.api_key:
            raise AIServiceError("GF_LLM_API_KEY 未配置")

        start_time = time.monotonic()
        gen_config = gen_config or GenerationConfig()
        url = f"{self.base_url}/chat/completions"
        
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        
        payload: Dict[str, Any] = {
            "model": model or self.model,
            "messages": messages,
            "temperature": gen_config.temperature,
            "max_tokens": gen_config.max_tokens,
            "top_p": gen_config.top_p,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        
        async with httpx.AsyncClient(transport=self._transport) as client:
            response = await client.post(
                url,
                json=payload,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=gen_config.timeout
            )
            response.raise_for_status()
            result = response.json()

        try:
            content = result["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise AIServiceError(f"响应格式异常: {e}") from e
        if not content:
            raise AIServiceError("AI 响应内容为空")

        duration = int((time.monotonic() - start_time) * 1000)
        usage = _parse_usage(result.get("usage"))
        logger.info(
            f"AI 调用完成 model={result.get('model') or payload['model']} "
            f"duration_ms={duration} tokens={usage.total_tokens if usage else 'n/a'}"
        )
        return AIResponse(
            content=content,
            model=result.get("model") or payload["model"],
            usage=usage,
        )


def _parse_usage(raw: Optional[Dict[str, Any]]) -> Optional[TokenUsage]:
    if not raw:
        return None
    return TokenUsage(
        prompt_tokens=int(raw.get("prompt_tokens", 0)),
        completion_tokens=int(raw.get("completion_tokens", 0)),
        total_tokens=int(raw.get("total_tokens", 0)),
    )


# ================== 生成验证器 ==================

def validate_json_response(response: str) -> bool:
    """验证 JSON 响应（容忍外层代码围栏）"""
    from gradefoundry.schemas import strip_code_fences

    try:
        json.loads(strip_code_fences(response))
        return True
    except json.JSONDecodeError:
        return False
