[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "netgraph"
version = "0.1.0"
description = "Network topology resolution for an indexing network: subgraphs, deployments, indexers and their indexings."
requires-python = ">=3.10"
dependencies = [
    "semver",
]
keywords = ["subgraph", "indexer", "deployment", "network", "topology", "gateway"]
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
    "Framework :: AsyncIO",
    "Topic :: Internet :: WWW/HTTP :: Indexing/Search",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["netgraph"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
