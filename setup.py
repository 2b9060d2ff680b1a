"""
Agent Orchestrator 安装配置

工具调用编排库的安装脚本
"""

from setuptools import setup, find_packages

# 读取 README 文件作为长描述
try:
    with open("README.md", "r", encoding="utf-8") as fh:
        long_description = fh.read()
except FileNotFoundError:
    long_description = "工具调用编排库 - 提供编排循环、工具调度、成本跟踪与模型适配"

# 读取依赖列表
try:
    with open("requirements.txt", "r", encoding="utf-8") as fh:
        requirements = [line.strip() for line in fh if line.strip() and not line.startswith("#")]
except FileNotFoundError:
    requirements = [
        "pydantic>=2.0.0",
        "httpx>=0.24.0",
        "loguru>=0.7.0",
        "python-dotenv>=1.0.0",
        "tzdata>=2023.3",
    ]

setup(
    name="agent-orchestrator",
    version="0.1.0",
    author="Jese Ki",
    author_email="209490107@qq.com",
    description="工具调用编排库 - 提供编排循环、工具调度、成本跟踪与模型适配",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.9",
    install_requires=requirements,
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "black>=22.0.0",
            "flake8>=5.0.0",
            "mypy>=1.0.0",
        ],
    },
    keywords="ai, agent, llm, orchestrator, tools, openai, anthropic, cost",
    include_package_data=True,
    zip_safe=False,
)
