from setuptools import setup, find_packages

setup(
    name="signstage",
    version="0.1.0",
    packages=find_packages(include=["signstage", "signstage.*"]),
    include_package_data=True,
    python_requires=">=3.11",
    install_requires=[
        "rich",
        "python-dotenv",
        "cryptography",
        "toml",
        "rich-argparse",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "signstage=signstage.cli:main",
        ],
    },
)
