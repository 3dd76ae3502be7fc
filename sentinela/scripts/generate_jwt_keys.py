#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Generate an RSA key pair for JWT signing.

Prints both PEM keys and the matching JWT_PRIVATE_KEY / JWT_PUBLIC_KEY
lines so tokens stay valid across restarts.

Usage: python -m sentinela.scripts.generate_jwt_keys
"""

from sentinela.services.auth import generate_dev_key_pair


def as_env_line(name: str, pem: str) -> str:
    """Single-line environment assignment with escaped newlines."""
    escaped = pem.strip().replace("\n", "\\n")
    return f'{name}="{escaped}"'


if __name__ == "__main__":
    private_key, public_key = generate_dev_key_pair()

    print("=== JWT PRIVATE KEY ===")
    print(private_key)
    print("\n=== JWT PUBLIC KEY ===")
    print(public_key)

    print("\n=== Environment Variables ===")
    print(as_env_line("JWT_PRIVATE_KEY", private_key))
    print(as_env_line("JWT_PUBLIC_KEY", public_key))
