import setuptools
from setuptools import find_packages

with open("readme.md", "r") as fh:
    long_description = fh.read()


vars2find = ["__author__", "__version__", "__url__"]
vars2readme = {}
with open("./clusterseed/__init__.py") as f:
    for line in f.readlines():
        for v in vars2find:
            if line.startswith(v):
                line = line.replace(" ", "").replace('"', "").replace("'", "").strip()
                vars2readme[v] = line.split("=")[1]

core_deps = [
    "pydantic>=2.0",
    "networkx",
    "xxhash",
    "tenacity",
    "fastapi",
    "uvicorn",
    "httpx",
]

setuptools.setup(
    name="clusterseed",
    url=vars2readme["__url__"],
    version=vars2readme["__version__"],
    author=vars2readme["__author__"],
    description="Seed replicated graph store clusters from backups and verify convergence",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["clusterseed", "clusterseed.*"]),
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.10",
    install_requires=core_deps,
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
    entry_points={
        "console_scripts": [
            "clusterseed-backup=clusterseed.backup.cli:main",
        ],
    },
)
