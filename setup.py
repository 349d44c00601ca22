from setuptools import find_packages, setup

setup(
    name="url-reader",
    version="0.1.0",
    license="Apache License 2.0",

    python_requires=">=3.11",
    description="Read files, trees and glob searches from source control "
                "hosts through a host-independent interface.",

    packages=find_packages(exclude=('tests', 'tests.*')),

    install_requires=[
        "httpx>=0.27,<1.0",
        "pydantic~=2.7",
        "pydantic-settings[yaml]~=2.3",
        "structlog>=24.1",
        "python-json-logger>=3.1",
        "prometheus-client>=0.20",
        "wcmatch>=8.5,<11.0",
    ],

    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },

    test_suite="tests",

    classifiers=[
        'Development Status :: 3 - Alpha',
        'Programming Language :: Python',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
    ],
)
