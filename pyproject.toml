[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rvpipesim"
version = "0.1.0"
description = "Five-stage pipelined RISC-V simulator with branch prediction and a multi-level cache model"
requires-python = ">=3.10"
dependencies = []
keywords = ["risc-v", "simulator", "pipeline", "cache", "branch-prediction", "emulator"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Education",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Emulators",
    "Topic :: Education",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
rvpipesim = "rvpipesim.cpu_cli:main"
rvpipesim-cachesim = "rvpipesim.cache_cli:main"
rvpipesim-cacheopt = "rvpipesim.cache_cli:optimized_main"
rvpipesim-dinero = "rvpipesim.trace:main"

[tool.hatch.build.targets.wheel]
packages = ["rvpipesim"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
