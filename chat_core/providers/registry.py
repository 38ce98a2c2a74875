"""Provider 目录与模型解析。

本模块将“逻辑 provider id”与“具体厂商模型”解耦：

- provider id：界面与请求里使用的统一名称，例如 "gpt-4"、"claude-3"。
- company：该 provider 所属的厂商，决定使用哪一族客户端与哪一个凭证。
- models：厂商实际提供的模型 ID 列表，第一个为默认模型。

ProviderRegistry 由调用方显式构造并注入（API 层、测试各自持有实例），
不存在模块级的全局单例状态。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from chat_core.config.settings import Settings, settings as default_settings
from chat_core.domain.exceptions import (
    MissingCredentialError,
    UnknownProviderError,
    UnsupportedProviderError,
)
from chat_core.providers.anthropic_client import AnthropicClient
from chat_core.providers.base import ProviderClient
from chat_core.providers.google_client import GoogleClient
from chat_core.providers.openai_client import GroqClient, OpenAIClient


class ProviderFamily(Enum):
    """已支持的厂商族。value 为 (小写厂商名, 凭证名, 展示名)。"""

    OPENAI = ("openai", "OPENAI_API_KEY", "OpenAI")
    ANTHROPIC = ("anthropic", "ANTHROPIC_API_KEY", "Anthropic")
    GOOGLE = ("google", "GOOGLE_AI_API_KEY", "Google AI")
    GROQ = ("groq", "GROQ_API_KEY", "Groq")

    @property
    def company(self) -> str:
        return self.value[0]

    @property
    def credential_key(self) -> str:
        return self.value[1]

    @property
    def label(self) -> str:
        return self.value[2]

    @classmethod
    def from_company(cls, company: str) -> Optional["ProviderFamily"]:
        """按厂商名查找（不区分大小写），找不到返回 None。"""

        key = (company or "").strip().lower()
        for family in cls:
            if family.company == key:
                return family
        return None


@dataclass(frozen=True)
class ProviderDescriptor:
    """目录中的一个 provider，进程启动时定义，之后不再修改。"""

    id: str
    name: str
    company: str
    models: Tuple[str, ...]
    capabilities: frozenset = field(default_factory=frozenset)
    requires_api_key: bool = True

    @property
    def default_model(self) -> str:
        return self.models[0]

    def to_dict(self, status: str = "not-configured") -> Dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "company": self.company,
            "models": list(self.models),
            "capabilities": sorted(self.capabilities),
            "status": status,
            "requiresApiKey": self.requires_api_key,
        }


DEFAULT_PROVIDERS: Tuple[ProviderDescriptor, ...] = (
    ProviderDescriptor(
        id="gpt-4",
        name="GPT-4",
        company="OpenAI",
        models=("gpt-4", "gpt-4-turbo"),
        capabilities=frozenset({"text", "code", "analysis"}),
    ),
    ProviderDescriptor(
        id="gpt-4-vision",
        name="GPT-4 Vision",
        company="OpenAI",
        models=("gpt-4-vision-preview", "gpt-4-turbo"),
        capabilities=frozenset({"text", "vision", "analysis"}),
    ),
    ProviderDescriptor(
        id="claude-3",
        name="Claude 3",
        company="Anthropic",
        models=("claude-3-opus-20240229", "claude-3-sonnet-20240229", "claude-3-haiku-20240307"),
        capabilities=frozenset({"text", "code", "analysis"}),
    ),
    ProviderDescriptor(
        id="gemini-pro",
        name="Gemini Pro",
        company="Google",
        models=("gemini-pro", "gemini-pro-vision"),
        capabilities=frozenset({"text", "code", "multimodal"}),
    ),
    ProviderDescriptor(
        id="groq-llama",
        name="Llama 3 (Groq)",
        company="Groq",
        models=("llama3-70b-8192", "llama3-8b-8192"),
        capabilities=frozenset({"text", "code"}),
    ),
)


ClientFactory = Callable[[str, str, Settings], ProviderClient]

# 每个厂商族一个构造函数：(api_key, model, settings) -> ProviderClient
_CLIENT_FACTORIES: Dict[ProviderFamily, ClientFactory] = {
    ProviderFamily.OPENAI: lambda key, model, cfg: OpenAIClient(
        api_key=key, model=model, base_url=cfg.openai_base_url, timeout=cfg.http_timeout
    ),
    ProviderFamily.ANTHROPIC: lambda key, model, cfg: AnthropicClient(
        api_key=key,
        model=model,
        base_url=cfg.anthropic_base_url,
        timeout=cfg.http_timeout,
        api_version=cfg.anthropic_version,
    ),
    ProviderFamily.GOOGLE: lambda key, model, cfg: GoogleClient(
        api_key=key, model=model, base_url=cfg.google_base_url, timeout=cfg.http_timeout
    ),
    ProviderFamily.GROQ: lambda key, model, cfg: GroqClient(
        api_key=key, model=model, base_url=cfg.groq_base_url, timeout=cfg.http_timeout
    ),
}

_unmapped = set(ProviderFamily) - set(_CLIENT_FACTORIES)
if _unmapped:
    raise RuntimeError(f"No client factory for provider families: {sorted(f.name for f in _unmapped)}")


def _has_secret(credentials: Mapping[str, str], key: str) -> bool:
    value = credentials.get(key)
    return isinstance(value, str) and bool(value.strip())


class ProviderRegistry:
    """Provider 目录 + 模型解析器。"""

    def __init__(
        self,
        providers: Optional[Iterable[ProviderDescriptor]] = None,
        settings: Optional[Settings] = None,
    ):
        self._settings = settings or default_settings
        self._providers: Dict[str, ProviderDescriptor] = {}
        for descriptor in DEFAULT_PROVIDERS if providers is None else providers:
            if descriptor.id in self._providers:
                raise ValueError(f"Duplicate provider id: {descriptor.id!r}")
            if not descriptor.models:
                raise ValueError(f"Provider {descriptor.id!r} declares no models")
            self._providers[descriptor.id] = descriptor

    def list_providers(self) -> List[ProviderDescriptor]:
        return list(self._providers.values())

    def get_provider(self, provider_id: str) -> ProviderDescriptor:
        """按 id 精确查找（大小写敏感）。"""

        try:
            return self._providers[provider_id]
        except KeyError:
            raise UnknownProviderError(provider_id)

    def validate_credentials(self, provider_id: str, credentials: Mapping[str, str]) -> bool:
        """纯判断：provider 存在且其厂商族所需的凭证非空时返回 True。"""

        descriptor = self._providers.get(provider_id)
        if descriptor is None:
            return False
        family = ProviderFamily.from_company(descriptor.company)
        if family is None:
            return False
        if not descriptor.requires_api_key:
            return True
        return _has_secret(credentials or {}, family.credential_key)

    def resolve_model(self, provider_id: str, credentials: Mapping[str, str]) -> ProviderClient:
        """解析 provider id，返回绑定了凭证与默认模型的客户端。

        不做网络 I/O；失败时抛出 UnknownProviderError / UnsupportedProviderError /
        MissingCredentialError，绝不返回半配置的客户端。
        """

        descriptor = self.get_provider(provider_id)
        family = ProviderFamily.from_company(descriptor.company)
        if family is None:
            raise UnsupportedProviderError(descriptor.company, provider_id=provider_id)
        credentials = credentials or {}
        if descriptor.requires_api_key and not _has_secret(credentials, family.credential_key):
            raise MissingCredentialError(provider_id, family.credential_key, label=family.label)
        api_key = str(credentials.get(family.credential_key) or "").strip()
        return _CLIENT_FACTORIES[family](api_key, descriptor.default_model, self._settings)

    def provider_status(self, provider_id: str) -> str:
        """目录展示用：服务端配置了该厂商族的密钥时为 connected。"""

        descriptor = self.get_provider(provider_id)
        family = ProviderFamily.from_company(descriptor.company)
        if family is None:
            return "not-configured"
        server_key = getattr(self._settings, family.credential_key.lower(), None)
        return "connected" if server_key else "not-configured"
