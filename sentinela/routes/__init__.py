# SPDX-License-Identifier: Apache-2.0

"""
HTTP resources, one APIBlueprint per module.
"""
