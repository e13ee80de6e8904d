# -*- coding: utf-8 -*-
"""Generators for fields that have no source and no value yet."""

import secrets
import string

DEFAULT_PASSWORD_LENGTH = 20
DEFAULT_HMAC_BYTES = 20


def generate_password(length=None):
    """Generates a cryptographically secure random password of letters and digits."""
    length = length or DEFAULT_PASSWORD_LENGTH
    letters = string.ascii_letters + string.digits
    return "".join(secrets.choice(letters) for _ in range(length))


def generate_hmac(length=None):
    """A hex encoded random token, `length` is the number of random bytes."""
    return secrets.token_hex(length or DEFAULT_HMAC_BYTES)


GENERATORS = {
    "password": generate_password,
    "hmac": generate_hmac,
}


def generate(generator, length=None):
    return GENERATORS[generator](length)
