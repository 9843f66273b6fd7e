[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "robocal"
version = "0.1.0"
description = "Robot kinematic calibration tools: offset bookkeeping, URDF updates, chain control, base calibration and feature finders for LEDs, planes and laser scans."
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = ["robotics", "calibration", "urdf", "kinematics", "point-cloud", "laser-scan"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Human Machine Interfaces",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["robocal"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
