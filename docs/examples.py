"""
编排器使用示例

示例包含:
- 自定义天气查询工具
- 内置计算器与时间工具
- 预算控制与事件订阅
- 多轮对话与按步骤执行任务

运行前在 .env 中配置 OPENAI_API_KEY（以及可选的 OPENAI_API_BASE）
"""

import asyncio
import random

from pydantic import BaseModel

from agent_orchestrator import (
    Orchestrator,
    OrchestratorEvent,
    TaskRunner,
    TaskStep,
    calculator,
    conversational_orchestrator,
    load_model_config,
    task_orchestrator,
    timestamp,
    tool,
)

MODEL_NAME = "gpt-4o-mini"

# === 工具定义 ===


class WeatherResponse(BaseModel):
    """天气响应模型"""

    city: str
    temperature: float
    weather: str


@tool
def get_weather(city: str) -> WeatherResponse:
    """获取指定城市的天气信息

    Args:
        city: 城市名称

    Returns:
        WeatherResponse: 天气信息
    """
    print(f"[工具执行] 获取 {city} 的天气信息")
    weather_conditions = ["晴天", "多云", "阴天", "小雨", "大雨", "暴风雨"]
    return WeatherResponse(
        city=city,
        temperature=random.randint(10, 30),
        weather=random.choice(weather_conditions),
    )


def print_event(event: OrchestratorEvent) -> None:
    """打印生命周期事件"""
    if event.type == "tool_call":
        print(f"🔧 调用工具: {event.tool_name}({event.arguments})")
    elif event.type == "tool_result":
        status = "✅" if event.success else "❌"
        print(f"{status} 工具结果: {event.result if event.success else event.error}")
    elif event.type == "content_delta":
        print(event.delta, end="", flush=True)
    elif event.type == "iteration":
        print(f"--- 第 {event.iteration} 次迭代 ---")


# === 示例 ===


async def run_basic_example():
    """单次任务：工具调用 + 预算"""
    model = load_model_config(MODEL_NAME, dotenv_path=".env")
    orchestrator = Orchestrator(
        model=model,
        tools=[get_weather, calculator, timestamp],
        system_prompt="你是一个智能助手，可以查询天气、计算和获取时间。",
        budget={"max_cost": 0.05, "max_tool_calls": 10},
        debug_mode=True,
    )
    orchestrator.on_event(print_event)

    try:
        result = await orchestrator.execute("北京和上海今天的平均温度是多少？现在几点了？")
    finally:
        await orchestrator.aclose()

    if result.success:
        print(f"\n🤖 {result.result}")
    else:
        print(f"\n❌ 执行失败: {result.error}")
    tracking = result.cost_tracking
    print(
        f"📊 迭代: {result.iterations}，工具调用: {tracking.tool_calls}，"
        f"token: {tracking.total_tokens}，估算成本: ${tracking.estimated_cost:.4f}"
    )


async def run_conversation_example():
    """多轮对话：历史在多次 execute() 之间保留"""
    orchestrator = conversational_orchestrator(
        model=load_model_config(MODEL_NAME, dotenv_path=".env"),
        tools=[get_weather],
    )
    try:
        for question in ["我在杭州", "我这里天气怎么样？"]:
            result = await orchestrator.execute(question)
            print(f"👤 {question}\n🤖 {result.result if result.success else result.error}")
    finally:
        await orchestrator.aclose()


async def run_task_example():
    """按步骤执行任务"""
    orchestrator = task_orchestrator(
        model=load_model_config(MODEL_NAME, dotenv_path=".env"),
        tools=[get_weather, calculator],
    )
    runner = TaskRunner(
        orchestrator,
        steps=[
            TaskStep(name="收集", description="查询北京、上海、广州的天气", tools=["get_weather"]),
            TaskStep(name="计算", description="计算三个城市的平均温度", tools=["calculator"]),
            TaskStep(name="总结", description="给出出行建议"),
        ],
    )
    try:
        while not runner.get_progress().completed:
            step_result = await runner.execute_next_step()
            if not step_result.success:
                print(f"❌ 步骤失败: {step_result.error}")
                break
            print(f"✅ {step_result.completed_step.name}: {step_result.execution.result}")
    finally:
        await orchestrator.aclose()


if __name__ == "__main__":
    asyncio.run(run_basic_example())
    asyncio.run(run_conversation_example())
    asyncio.run(run_task_example())
