[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "llmd-kvcache"
version = "0.1.0"
description = "KV-cache aware indexing and pod scoring for LLM inference fleets"
requires-python = ">=3.10"
dependencies = [
    "redis",
]
keywords = ["kv-cache", "llm", "inference", "prefix-cache", "scheduling", "redis"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["llmd_kvcache"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
