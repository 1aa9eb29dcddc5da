[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "honker"
version = "0.1.0"
description = "Versioned database schema migrations from annotated SQL files and registered migration functions"
requires-python = ">=3.10"
dependencies = []
keywords = ["database", "migrations", "schema", "sql", "versioning"]
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
    "Topic :: Database",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["honker"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
