[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "nginx-automake"
version = "0.1.0"
description = "Web service that rebuilds nginx from `nginx -V` output with extra third-party modules"
requires-python = ">=3.10"
keywords = ["nginx", "build", "compile", "modules", "configure"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Web Environment",
    "Framework :: Flask",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Build Tools",
]
dependencies = [
    "flask",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
nginx-automake = "nginx_automake.app:main"

[tool.hatch.build.targets.wheel]
packages = ["nginx_automake"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
