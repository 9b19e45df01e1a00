from setuptools import setup
from re import findall

def pep_version(s: str) -> str:
    """Take initial numeric part from the string, to comply with PEP-440"""
    for i in range(0, len(s)):
        if not s[i] in "0123456789.":
            return s[:i].rstrip(".")
    return s.rstrip(".")

with open("debian/changelog", "r") as clog:
    _, version, _ = findall(
        r"(?P<src>.*) \((?P<version>.*)\) (?P<suite>.*); .*",
        clog.readline().strip(),
    )[0]

with open("README.md") as readme:
    long_description = readme.read()

setup(
    name="poolhcpd",
    version=pep_version(version),
    description="A DHCPv4 server allocating from subnet pools",
    packages=["poolhcpd"],
    install_requires=["dpkt", "pyroute2"],
    extras_require={"test": ["black", "mypy"]},
    license="MIT",
    long_description=long_description,
    long_description_content_type="text/markdown",
)
