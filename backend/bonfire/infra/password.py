"""Centralized PIN hashing configuration.

Bonfire PINs are short numeric strings, so they are stored only as Argon2id
hashes. Each encoded hash carries its own random salt; plaintext PINs are
never persisted or logged.
"""

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

PIN_HASHER = PasswordHasher(
	time_cost=3,
	memory_cost=65536,
	parallelism=4,
	hash_len=32,
	salt_len=16,
)


def hash_pin(pin: str) -> str:
	"""Hash a PIN using Argon2id with a per-record salt."""
	return PIN_HASHER.hash(pin)


def verify_pin(pin_hash: str, pin: str) -> bool:
	"""Return True when the PIN matches the stored hash."""
	try:
		return PIN_HASHER.verify(pin_hash, pin)
	except (VerificationError, InvalidHashError):
		return False
