[build-system]
requires = ["setuptools>=64"]
build-backend = "setuptools.build_meta"

[project]
name = "ext2sim"
version = "0.1.0"
description = "A simplified EXT2-style file system simulator backed by a disk image file, with an interactive shell"
requires-python = ">=3.10"
dependencies = []
keywords = ["ext2", "filesystem", "simulator", "inode", "disk image", "bitmap"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Education",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
    "Topic :: Education",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
ext2sim = "ext2sim.shell:main"

[tool.setuptools]
packages = ["ext2sim"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
