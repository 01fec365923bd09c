[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pcilib"
version = "3.10.0"
description = "Access to PCI configuration space: device scanning, filtering, capabilities, register dumps and PCIe ECAM"
requires-python = ">=3.10"
dependencies = []
keywords = ["pci", "pcie", "config-space", "ecam", "acpi", "mcfg", "hardware"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Hardware",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
pcilib = "pcilib.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["pcilib"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
