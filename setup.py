from setuptools import setup, find_packages

setup(
    name="daemon-api-proxy",
    version="1.0.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "fastapi",
        "uvicorn",
        "pydantic>=2",
        "pydantic-settings",
        "structlog",
        "aiohttp",
        "sqlalchemy>=1.4",
        "prometheus_client"
    ],
    extras_require={
        "test": [
            "pytest",
            "httpx"
        ]
    },
    python_requires=">=3.8",
    entry_points={
        "console_scripts": [
            "daemon-proxy=proxy.__main__:main",
        ],
    }
)
