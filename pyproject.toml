[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pgzonedns"
version = "0.1.0"
description = "Authoritative DNS answers built from zone records stored in a PostgreSQL table"
requires-python = ">=3.10"
dependencies = [
    "dnspython",
]
keywords = ["dns", "postgresql", "authoritative", "zone", "records", "dnspython"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Name Service (DNS)",
    "Topic :: Database :: Front-Ends",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["pgzonedns"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
