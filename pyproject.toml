[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ffwebapi"
version = "0.1.0"
description = "HTTP API that queues and runs ffmpeg conversion jobs and serves their output files"
requires-python = ">=3.10"
keywords = ["ffmpeg", "video", "transcoding", "conversion", "http", "api", "task-queue"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Web Environment",
    "Framework :: Flask",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
    "Topic :: Multimedia :: Video :: Conversion",
]
dependencies = [
    "flask",
    "werkzeug",
    "pyyaml",
    "psutil",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
ffwebapi = "ffwebapi.server:main"

[tool.hatch.build.targets.wheel]
packages = ["ffwebapi"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]
