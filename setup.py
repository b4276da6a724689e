from setuptools import setup, find_packages

setup(
    name="stackrender",
    version="0.2.0",
    description=(
        "Configuration resolution and manifest rendering for the mcp-stack chart"
    ),
    packages=find_packages(include=["stackrender", "stackrender.*"]),
    include_package_data=True,
    package_data={"stackrender": ["chart/*.yaml"]},
    python_requires=">=3.9",
    install_requires=[
        "pydantic>=2.0",
        "PyYAML>=6.0",
        "typer>=0.9",
        "rich>=13.0",
        "kubernetes>=28.1",
        "urllib3>=1.26",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": ["stackrender=stackrender.cli:main"],
    },
)
