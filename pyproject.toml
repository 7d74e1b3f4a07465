[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "perpdex"
version = "0.2.0"
description = "Async client for perpetual futures exchanges, with Hyperliquid market data, account queries, order signing and streaming"
requires-python = ">=3.10"
keywords = ["cryptocurrency", "trading", "perpetuals", "dex", "hyperliquid", "asyncio"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Financial and Insurance Industry",
    "Framework :: AsyncIO",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Office/Business :: Financial :: Investment",
]
dependencies = [
    "httpx>=0.25",
    "websockets>=11",
    "msgpack>=1.0",
    "pycryptodome>=3.18",
]

[project.optional-dependencies]
test = [
    "pytest>=7.4",
    "pytest-asyncio>=0.21",
]

[tool.hatch.build.targets.wheel]
packages = ["perpdex"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
