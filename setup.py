from setuptools import setup, find_packages

setup(
    name="servicer-tracker",
    version="1.0.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "pydantic>=2.7",
        "pydantic-settings>=2.0",
        "httpx>=0.24",
        "python-dotenv>=1.0",
        "supabase>=2.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
        ],
    },
    python_requires=">=3.9",
)
