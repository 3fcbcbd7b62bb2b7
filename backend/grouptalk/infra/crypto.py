"""Reversible at-rest encryption for message content."""

from __future__ import annotations

import base64

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from grouptalk.domain.common.exceptions import CorruptDataError

_KDF_INFO = b"grouptalk:message-content:v1"


def derive_fernet_key(secret: str) -> bytes:
	"""Stretch the configured opaque secret into a url-safe Fernet key."""
	if not secret:
		raise ValueError("encryption secret must not be empty")
	hkdf = HKDF(
		algorithm=hashes.SHA256(),
		length=32,
		salt=None,
		info=_KDF_INFO,
	)
	return base64.urlsafe_b64encode(hkdf.derive(secret.encode("utf-8")))


class MessageCipher:
	"""Seal and open message bodies with Fernet (AES-128-CBC + HMAC-SHA256)."""

	def __init__(self, secret: str) -> None:
		self._fernet = Fernet(derive_fernet_key(secret))

	def seal(self, plaintext: str) -> str:
		return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

	def open(self, sealed: str) -> str:
		try:
			return self._fernet.decrypt(sealed.encode("ascii")).decode("utf-8")
		except (InvalidToken, UnicodeError, ValueError, TypeError, AttributeError) as exc:
			raise CorruptDataError("corrupt_message_content") from exc
