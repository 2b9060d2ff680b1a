"""
成本估算模块

该模块包含:
- 各提供方模型的元数据与价格目录（每1000 token的输入/输出价格）
- 成本计算函数
- 成本跟踪器（纯计数，无I/O）

公开接口:
- PROVIDER_CATALOG: 提供方 -> 默认地址与模型元数据
- ModelInfo: 模型元数据
- get_model_info / calculate_cost / get_all_models
- fallback_cost: 无价格信息时的平均费率
- make_cost_function: 为指定模型生成成本函数
- CostTracker: 成本跟踪器
"""

from typing import Callable, Dict, List, Optional

from pydantic import BaseModel

from .logger_config import log_budget_check
from .schemas import Budget, BudgetCheck, BudgetViolation, CostTracking


class ModelCost(BaseModel):
    """每1000 token的价格（美元）"""

    input: float
    output: float


class ModelInfo(BaseModel):
    """模型元数据"""

    context_window: int
    cost: ModelCost
    description: str = ""


def _info(context_window: int, input_cost: float, output_cost: float, description: str) -> ModelInfo:
    return ModelInfo(
        context_window=context_window,
        cost=ModelCost(input=input_cost, output=output_cost),
        description=description,
    )


PROVIDER_CATALOG: Dict[str, Dict] = {
    "openai": {
        "base_url": "https://api.openai.com/v1",
        "models": {
            "gpt-4": _info(8192, 0.03, 0.06, "Most capable GPT-4 model"),
            "gpt-4-turbo": _info(128000, 0.01, 0.03, "GPT-4 Turbo with larger context window"),
            "gpt-4o": _info(128000, 0.005, 0.015, "GPT-4 Omni"),
            "gpt-4o-mini": _info(128000, 0.00015, 0.0006, "Smaller, faster GPT-4o variant"),
            "o3": _info(200000, 0.06, 0.24, "Reasoning model"),
            "o3-mini": _info(200000, 0.015, 0.06, "Smaller o3 variant with faster inference"),
        },
    },
    "anthropic": {
        "base_url": "https://api.anthropic.com",
        "models": {
            "claude-opus-4-20250514": _info(200000, 0.015, 0.075, "Most capable Claude 4 model"),
            "claude-sonnet-4-20250514": _info(200000, 0.003, 0.015, "Balanced Claude 4 model"),
            "claude-3-7-sonnet-latest": _info(200000, 0.003, 0.015, "Claude 3.7 Sonnet"),
            "claude-3-5-sonnet-latest": _info(200000, 0.003, 0.015, "Claude 3.5 Sonnet"),
        },
    },
    "google": {
        "base_url": "https://generativelanguage.googleapis.com/v1beta/openai",
        "models": {
            "gemini-2.5-pro": _info(2000000, 0.001, 0.002, "Gemini 2.5 Pro"),
            "gemini-2.5-flash": _info(1000000, 0.0005, 0.001, "Gemini 2.5 Flash"),
            "gemini-1.5-pro": _info(2000000, 0.00125, 0.005, "Gemini 1.5 Pro with large context window"),
            "gemini-1.5-flash": _info(1000000, 0.000075, 0.0003, "Fast and efficient Gemini 1.5 model"),
        },
    },
    "perplexity": {
        "base_url": "https://api.perplexity.ai",
        "models": {
            "sonar": _info(127072, 0.001, 0.001, "Sonar with online search"),
            "sonar-pro": _info(200000, 0.003, 0.015, "Sonar Pro with online search"),
        },
    },
    "xai": {
        "base_url": "https://api.x.ai/v1",
        "models": {
            "grok-beta": _info(131072, 0.005, 0.015, "Grok conversational model"),
            "grok-3": _info(131072, 0.003, 0.015, "Grok 3"),
        },
    },
}

# 无价格信息时的平均费率（每个token）
_FALLBACK_INPUT_RATE = 0.01 / 1000
_FALLBACK_OUTPUT_RATE = 0.02 / 1000

CostFunction = Callable[[int, int], float]


def get_model_info(provider: str, model: str) -> ModelInfo:
    """
    获取模型元数据

    Raises:
        KeyError: 未知的提供方或模型
    """
    config = PROVIDER_CATALOG.get(provider)
    if config is None:
        raise KeyError(f"未知的提供方: {provider}")
    info = config["models"].get(model)
    if info is None:
        raise KeyError(f"未知的模型: {model}（提供方: {provider}）")
    return info.model_copy(deep=True)


def get_default_base_url(provider: str) -> Optional[str]:
    config = PROVIDER_CATALOG.get(provider)
    return config["base_url"] if config else None


def calculate_cost(provider: str, model: str, input_tokens: int, output_tokens: int) -> float:
    """按目录价格计算成本，未知模型抛出KeyError"""
    info = get_model_info(provider, model)
    return input_tokens * info.cost.input / 1000 + output_tokens * info.cost.output / 1000


def fallback_cost(input_tokens: int, output_tokens: int) -> float:
    return input_tokens * _FALLBACK_INPUT_RATE + output_tokens * _FALLBACK_OUTPUT_RATE


def make_cost_function(provider: Optional[str], model: Optional[str]) -> CostFunction:
    """目录中有该模型则按目录价格计算，否则使用平均费率"""
    if provider and model:
        try:
            get_model_info(provider, model)
        except KeyError:
            return fallback_cost

        def _catalog_cost(input_tokens: int, output_tokens: int) -> float:
            return calculate_cost(provider, model, input_tokens, output_tokens)

        return _catalog_cost
    return fallback_cost


def get_all_models() -> List[Dict]:
    """列出目录中的所有模型"""
    return [
        {"provider": provider, "model": model, "info": info}
        for provider, config in PROVIDER_CATALOG.items()
        for model, info in config["models"].items()
    ]


class CostTracker:
    """
    成本跟踪器

    estimated_cost 始终等于 token 成本累计 + 工具调用成本累计，
    两者都只增不减，直到 reset()。token 成本按每次增量计算后累加，
    切换成本函数（例如切换模型）不会改写已经发生的成本。
    """

    def __init__(self, cost_function: Optional[CostFunction] = None):
        self._cost_function: CostFunction = cost_function or fallback_cost
        self._input_tokens = 0
        self._output_tokens = 0
        self._tool_calls = 0
        self._token_cost = 0.0
        self._tool_cost = 0.0

    def set_cost_function(self, cost_function: Optional[CostFunction]) -> None:
        self._cost_function = cost_function or fallback_cost

    def update_token_usage(self, input_tokens: int, output_tokens: int) -> None:
        if input_tokens < 0 or output_tokens < 0:
            raise ValueError("token 增量不能为负数")
        self._input_tokens += input_tokens
        self._output_tokens += output_tokens
        self._token_cost += max(self._cost_function(input_tokens, output_tokens), 0.0)

    def increment_tool_calls(self, cost: float = 0.0) -> None:
        if cost < 0:
            raise ValueError("工具调用成本不能为负数")
        self._tool_calls += 1
        self._tool_cost += cost

    def get_tracking(self) -> CostTracking:
        return CostTracking(
            input_tokens=self._input_tokens,
            output_tokens=self._output_tokens,
            tool_calls=self._tool_calls,
            estimated_cost=self._token_cost + self._tool_cost,
        )

    def check_budget(self, budget: Optional[Budget]) -> BudgetCheck:
        """
        逐项检查预算，所有违规都会被报告

        比较使用 >=，达到上限即视为超出。检查顺序固定为 cost、tokens、tool_calls。
        """
        details: List[BudgetViolation] = []
        if budget is not None:
            tracking = self.get_tracking()
            if budget.max_cost is not None and tracking.estimated_cost >= budget.max_cost:
                details.append(
                    BudgetViolation(
                        resource="cost",
                        current_value=tracking.estimated_cost,
                        limit=budget.max_cost,
                    )
                )
            if budget.max_tokens is not None and tracking.total_tokens >= budget.max_tokens:
                details.append(
                    BudgetViolation(
                        resource="tokens",
                        current_value=tracking.total_tokens,
                        limit=budget.max_tokens,
                    )
                )
            if budget.max_tool_calls is not None and tracking.tool_calls >= budget.max_tool_calls:
                details.append(
                    BudgetViolation(
                        resource="tool_calls",
                        current_value=tracking.tool_calls,
                        limit=budget.max_tool_calls,
                    )
                )

        violations = [_describe_violation(v) for v in details]
        log_budget_check(violations)
        return BudgetCheck(within_budget=not details, violations=violations, details=details)

    def reset(self) -> None:
        self._input_tokens = 0
        self._output_tokens = 0
        self._tool_calls = 0
        self._token_cost = 0.0
        self._tool_cost = 0.0


def _describe_violation(violation: BudgetViolation) -> str:
    if violation.resource == "cost":
        return f"Cost limit exceeded: ${violation.current_value:.4f} >= ${violation.limit}"
    if violation.resource == "tokens":
        return f"Token limit exceeded: {violation.current_value} >= {violation.limit}"
    return f"Tool call limit exceeded: {violation.current_value} >= {violation.limit}"
