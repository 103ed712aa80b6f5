# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Outreach workflow execution engine.

Interprets stored workflow graphs against business records, runs them on a
bounded worker pool and fires them from scheduled triggers.
"""

__version__ = "1.0.0"
