from setuptools import find_packages, setup

setup(
    name="autoupdate-intents",
    version="0.1.0",
    packages=find_packages(
        include=[
            "autoupdate_common",
            "autoupdate_common.*",
            "autoupdate_persistence",
            "autoupdate_persistence.*",
            "autoupdate_engine",
            "autoupdate_engine.*",
            "autoupdate_server",
            "autoupdate_server.*",
            "autoupdate_client",
            "autoupdate_client.*",
            "autoupdate_admin",
            "autoupdate_admin.*",
        ]
    ),
    install_requires=[
        "requests>=2.31.0",
        "fastapi>=0.104.0",
        "uvicorn>=0.24.0",
        "aiosqlite>=0.19.0",
        "click>=8.1.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-xdist>=3.3.0",
            "httpx>=0.25.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "autoupdate=autoupdate_client.cli:main",
            "autoupdate-controller=autoupdate_engine.__main__:main",
            "autoupdate-admin=autoupdate_admin.cli:cli",
            "autoupdate-server=autoupdate_server.app:main",
        ],
    },
    python_requires=">=3.11",
)
