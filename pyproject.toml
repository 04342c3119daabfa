[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "semorb"
version = "0.1.0"
description = "ORB feature extraction with semantic label descriptors, and descriptor matching for visual SLAM"
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = ["orb", "features", "slam", "descriptor", "matching", "semantic", "computer-vision"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Recognition",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["semorb"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
