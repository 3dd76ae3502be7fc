# SPDX-License-Identifier: Apache-2.0

"""
Sentinela Tático API - field operations backend for security patrol rounds.
"""

__version__ = "1.0.0"
