[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "grpc_middleware"
version = "0.1.0"
description = "Metadata helpers, validation interceptors, status handling and Prometheus-style call metrics for gRPC"
requires-python = ">=3.10"
keywords = ["grpc", "middleware", "interceptor", "metadata", "validation", "metrics", "prometheus", "backoff"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries :: Python Modules",
    "Topic :: System :: Networking",
    "Topic :: System :: Monitoring",
]
dependencies = [
    "grpcio",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["grpc_middleware"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
