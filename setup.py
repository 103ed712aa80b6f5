# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Setup configuration for the Outreach Workflow Execution Engine
"""

from setuptools import setup, find_packages

setup(
    name="outreach-engine",
    version="1.0.0",
    description="Graph workflow execution engine for outreach campaigns",
    author="Jason Cafarelli",
    packages=find_packages(include=["outreach", "outreach.*"]),
    python_requires=">=3.10",
    install_requires=[
        "pydantic>=2.0.0",
        "httpx>=0.24.0",
        "croniter>=1.3.0",
        "PyYAML>=6.0",
        "aiofiles>=23.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
        ]
    },
)
