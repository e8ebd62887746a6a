from setuptools import setup, find_namespace_packages

setup(
    name="flutsign",
    version="0.1.0",
    packages=find_namespace_packages(include=["flutsign", "flutsign.*"]),
    include_package_data=True,
    install_requires=[
        "rich",
        "requests",
        "python-dotenv",
        "toml",
        "rich-argparse",
        "asn1crypto",
        "cryptography",
        "pbxproj",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    entry_points={
        "console_scripts": [
            "flutsign=flutsign.cli:main",
        ],
    },
)
