[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "udpbatch"
version = "0.1.0"
description = "Reliable delivery over UDP with batched acknowledgements, retries and tick-rate servers"
requires-python = ">=3.10"
dependencies = []
keywords = ["udp", "ack", "reliability", "networking", "retransmission", "batch"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
udpbatch-server = "udpbatch.server:main"
udpbatch-client = "udpbatch.client:main"
udpbatch-simple = "udpbatch.simple:main"
udpbatch-batch = "udpbatch.batch:main"

[tool.hatch.build.targets.wheel]
packages = ["udpbatch"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
