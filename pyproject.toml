[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "cratesfyi"
version = "0.6.0"
description = "Builds and stores documentation for crates from the crates.io index"
requires-python = ">=3.11"
keywords = ["documentation", "crates", "rustdoc", "build-queue", "docs"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Documentation",
]
dependencies = [
    "sqlalchemy>=2.0",
    "requests>=2.28",
    "python-slugify>=8.0",
    "semver>=3.0",
    "html5lib>=1.1",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
    "responses>=0.23",
]

[project.scripts]
cratesfyi = "cratesfyi.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["cratesfyi"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
ignore_missing_imports = true
