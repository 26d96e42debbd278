"""
Confidentiality guard for the Employee Memory engine.

Sensitive memory fields are sealed with AES-256-GCM. Each employee gets
its own data key, derived from the process-wide master key with HKDF, and
the employee id is bound to every ciphertext as associated data, so an
envelope can only be opened on behalf of the employee it was sealed for.
"""

import os
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ..errors import DecryptionError, EncryptionError

logger = logging.getLogger("memory.crypto")

IV_BYTES = 12
TAG_BYTES = 16
SENSITIVE_FIELDS = ("content", "context")

_ENVELOPE_FIELDS = ("ciphertext", "iv", "auth_tag", "employee_id")


def is_envelope(value: Any) -> bool:
    return isinstance(value, Mapping) and all(k in value for k in _ENVELOPE_FIELDS)


class ConfidentialityGuard:
    """
    Encrypts and decrypts designated sensitive fields, keyed per employee.

    Args:
        master_key: 32-byte key loaded from the secret store
        enabled: When False, sensitive fields pass through unchanged
    """

    def __init__(self, master_key: Optional[bytes] = None, enabled: bool = True):
        if enabled and (not master_key or len(master_key) != 32):
            raise EncryptionError(
                "A 32-byte master key is required", operation="init_guard"
            )
        self._master_key = master_key
        self.enabled = enabled
        self._ciphers: Dict[str, AESGCM] = {}

    def _cipher(self, employee_id: str) -> AESGCM:
        cipher = self._ciphers.get(employee_id)
        if cipher is None:
            hkdf = HKDF(
                algorithm=hashes.SHA256(),
                length=32,
                salt=None,
                info=f"employee-memory:{employee_id}".encode("utf-8"),
            )
            cipher = AESGCM(hkdf.derive(self._master_key))
            self._ciphers[employee_id] = cipher
        return cipher

    def encrypt(self, data: Any, employee_id: str) -> Dict[str, str]:
        """
        Encrypt a JSON-serializable value for one employee.

        Args:
            data: The value to seal
            employee_id: Employee whose key seals the value

        Returns:
            Envelope with hex ``ciphertext``, ``iv`` and ``auth_tag``, plus
            ``employee_id`` and an ISO ``timestamp``
        """
        try:
            plaintext = json.dumps(data, ensure_ascii=False).encode("utf-8")
            iv = os.urandom(IV_BYTES)
            sealed = self._cipher(employee_id).encrypt(
                iv, plaintext, employee_id.encode("utf-8")
            )
        except (TypeError, ValueError) as e:
            logger.error(f"Encryption failed for {employee_id}: {str(e)}")
            raise EncryptionError(
                f"Encryption failed: {str(e)}", employee_id=employee_id, operation="encrypt"
            ) from e

        return {
            "ciphertext": sealed[:-TAG_BYTES].hex(),
            "iv": iv.hex(),
            "auth_tag": sealed[-TAG_BYTES:].hex(),
            "employee_id": employee_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def decrypt(self, envelope: Mapping[str, Any], employee_id: str) -> Any:
        """
        Verify and open an envelope produced by :meth:`encrypt`.

        Raises:
            DecryptionError: On tag mismatch, wrong employee, or a malformed
                envelope
        """
        if not is_envelope(envelope):
            raise DecryptionError(
                "Malformed envelope", employee_id=employee_id, operation="decrypt"
            )
        if envelope["employee_id"] != employee_id:
            raise DecryptionError(
                "Envelope belongs to a different employee",
                employee_id=employee_id,
                operation="decrypt",
            )
        try:
            iv = bytes.fromhex(envelope["iv"])
            sealed = bytes.fromhex(envelope["ciphertext"]) + bytes.fromhex(envelope["auth_tag"])
            if len(iv) != IV_BYTES:
                raise ValueError(f"IV must be {IV_BYTES} bytes")
            plaintext = self._cipher(employee_id).decrypt(
                iv, sealed, employee_id.encode("utf-8")
            )
            return json.loads(plaintext.decode("utf-8"))
        except InvalidTag:
            logger.error(f"Authentication failed while decrypting for {employee_id}")
            raise DecryptionError(
                "Authentication tag mismatch", employee_id=employee_id, operation="decrypt"
            ) from None
        except (TypeError, ValueError) as e:
            logger.error(f"Malformed envelope for {employee_id}: {str(e)}")
            raise DecryptionError(
                f"Malformed envelope: {str(e)}", employee_id=employee_id, operation="decrypt"
            ) from e

    def encrypt_fields(
        self,
        record: Mapping[str, Any],
        employee_id: str,
        sensitive_fields: Iterable[str] = SENSITIVE_FIELDS,
    ) -> Dict[str, Any]:
        """Return a copy of ``record`` with its sensitive fields sealed."""
        sealed = dict(record)
        if not self.enabled:
            return sealed
        for name in sensitive_fields:
            if sealed.get(name) is not None:
                sealed[name] = self.encrypt(sealed[name], employee_id)
        return sealed

    def decrypt_fields(
        self,
        record: Mapping[str, Any],
        employee_id: str,
        sensitive_fields: Iterable[str] = SENSITIVE_FIELDS,
    ) -> Dict[str, Any]:
        """Return a copy of ``record`` with its sealed fields opened."""
        opened = dict(record)
        for name in sensitive_fields:
            value = opened.get(name)
            if isinstance(value, Mapping) and "ciphertext" in value:
                if not self.enabled:
                    raise DecryptionError(
                        "Record is encrypted but encryption is disabled",
                        employee_id=employee_id,
                        operation="decrypt",
                    )
                opened[name] = self.decrypt(value, employee_id)
        return opened
