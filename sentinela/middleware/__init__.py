# SPDX-License-Identifier: Apache-2.0

"""
Middleware package for request processing.

Authentication, error handling, CORS and request body validation for the
Sentinela Tático API.
"""
