from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="mcp-smoke-harness",
    version="1.0.0",
    author="Scott Wilcox",
    author_email="example@example.com",  # Replace with actual email
    description="End-to-end readiness and protocol smoke tests for MCP servers over HTTP/SSE",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/scottwilcox/mcp-smoke-harness",
    project_urls={
        "Bug Tracker": "https://github.com/scottwilcox/mcp-smoke-harness/issues",
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: GNU Affero General Public License v3",
        "Operating System :: POSIX :: Linux",
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Testing",
    ],
    packages=find_packages(include=["mcp_harness", "mcp_harness.*"]),
    include_package_data=True,
    python_requires=">=3.9",
    install_requires=[
        "requests>=2.25.0",
        "sseclient-py>=1.7.2",
        "jsonschema>=4.0.0",
        "click>=8.0.0",
        "rich>=12.0.0",
        "python-dotenv>=1.0.0",
        "psutil>=5.9.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "mcp-smoke=mcp_harness.cli:main",
        ],
    },
)
