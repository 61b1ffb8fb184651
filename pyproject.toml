[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pointaccrual"
version = "0.1.0"
description = "HTTP service that accrues customer loyalty points from daily purchase CSV files"
requires-python = ">=3.10"
keywords = ["loyalty", "points", "csv", "mongodb", "flask"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: Flask",
    "Topic :: Office/Business",
]
dependencies = [
    "flask",
    "pymongo",
    "python-dotenv",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
pointaccrual = "pointaccrual.app:main"

[tool.hatch.build.targets.wheel]
packages = ["pointaccrual"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
