# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Core utilities and shared modules for the outreach engine.

This package contains:
- config: Configuration management
- errors: Custom exceptions
- logging: Structured logging
"""

from outreach.core.config import get_config, Config
from outreach.core.errors import OutreachError, NotFoundError, ConfigurationError
from outreach.core.logging import get_logger

__all__ = [
    "get_config",
    "Config",
    "OutreachError",
    "NotFoundError",
    "ConfigurationError",
    "get_logger",
]
