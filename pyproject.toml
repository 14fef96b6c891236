[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "gpushare"
version = "0.17.1"
description = "Configuration model and node-side helpers for sharing NVIDIA GPUs in Kubernetes clusters"
requires-python = ">=3.10"
keywords = [
    "kubernetes",
    "gpu",
    "device-plugin",
    "mps",
    "time-slicing",
    "configuration",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
]
dependencies = [
    "pyyaml>=6.0",
    "requests>=2.28",
    "psutil>=5.9",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[project.scripts]
gpushare-config-manager = "gpushare.config_manager:main"

[tool.hatch.build.targets.wheel]
packages = ["gpushare"]

[tool.hatch.build.targets.sdist]
include = ["gpushare", "tests", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
