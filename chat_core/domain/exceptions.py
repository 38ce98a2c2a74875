"""统一业务异常模型。

所有跨模块抛出的业务级错误都继承自 BusinessError，
便于在 API 层或编排层做统一捕获与用户提示。

层次结构：

- UnknownProviderError: provider id 不在目录中。
- MissingCredentialError: provider 已知，但所需的 API key 缺失。
- UnsupportedProviderError: provider 已知，但所属厂商没有对应的客户端。
- ValidationError: 请求参数或导入数据校验失败。
- GenerationFailure: 生成调用本身失败（网络、限流、响应异常、超时、取消）。
"""

from typing import Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 provider_id、status_code 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class UnknownProviderError(BusinessError):
    """provider id 在目录中不存在（大小写敏感的精确匹配）。"""

    def __init__(self, provider_id: str):
        super().__init__(
            code="UNKNOWN_PROVIDER",
            message=f"Unknown provider: {provider_id}",
            http_status=404,
            provider_id=provider_id,
        )
        self.provider_id = provider_id


class MissingCredentialError(BusinessError):
    """所需凭证缺失，消息中同时包含凭证名与 provider id。"""

    def __init__(self, provider_id: str, credential_key: str, label: Optional[str] = None):
        prefix = f"{label} API key" if label else "API key"
        super().__init__(
            code="MISSING_API_KEY",
            message=f"{prefix} not configured for provider {provider_id} ({credential_key})",
            http_status=401,
            provider_id=provider_id,
            credential_key=credential_key,
        )
        self.provider_id = provider_id
        self.credential_key = credential_key


class UnsupportedProviderError(BusinessError):
    """provider 的厂商字段无法映射到任何已实现的客户端族。"""

    def __init__(self, company: str, provider_id: Optional[str] = None):
        super().__init__(
            code="UNSUPPORTED_PROVIDER",
            message=f"Unsupported provider: {company}",
            http_status=400,
            provider_id=provider_id,
            company=company,
        )
        self.company = company


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class GenerationFailure(BusinessError):
    """生成调用失败的基类，默认映射为 500。"""

    def __init__(self, code: str = "GENERATION_FAILED", message: str = "Failed to generate response",
                 http_status: int = 500, **extra):
        super().__init__(code=code, message=message, http_status=http_status, **extra)


class NetworkError(GenerationFailure):
    """网络层错误，例如连接失败、读超时等。"""


class ApiError(GenerationFailure):
    """第三方 API 返回非 2xx/429 错误，或响应体无法解析时抛出。"""


class RateLimitError(GenerationFailure):
    """Provider 限流错误。编排层不自动重试，交给用户重新发起。"""


class RequestTimeoutError(GenerationFailure):
    """单次请求超过编排层设定的超时时间。"""


class RequestCancelledError(GenerationFailure):
    """请求被显式取消（cancel 或 clear_messages）。"""
