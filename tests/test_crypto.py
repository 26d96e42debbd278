"""
Tests for the confidentiality guard.
"""

import os
import sys
import unittest
import logging

# Disable logging during tests
logging.disable(logging.CRITICAL)

# Add the parent directory to the path to import the employee_memory package
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from employee_memory.errors import DecryptionError, EncryptionError
from employee_memory.memory.crypto import ConfidentialityGuard, is_envelope
from tests.fakes import TEST_KEY


class TestConfidentialityGuard(unittest.TestCase):
    """Tests for ConfidentialityGuard."""

    def setUp(self):
        self.guard = ConfidentialityGuard(TEST_KEY)

    def test_round_trip(self):
        for content in ("", "Implemented microservices with Docker", "naïve café 日本語 🚀"):
            for employee_id in ("emp_001", "emp_013", "unknown"):
                envelope = self.guard.encrypt(content, employee_id)
                self.assertEqual(self.guard.decrypt(envelope, employee_id), content)

    def test_round_trip_structured(self):
        context = {"project": "billing", "technologies": ["docker", "k8s"], "effectiveness": None}
        envelope = self.guard.encrypt(context, "emp_004")
        self.assertEqual(self.guard.decrypt(envelope, "emp_004"), context)

    def test_envelope_shape(self):
        envelope = self.guard.encrypt("secret", "emp_004")
        self.assertTrue(is_envelope(envelope))
        self.assertEqual(len(bytes.fromhex(envelope["iv"])), 12)
        self.assertEqual(len(bytes.fromhex(envelope["auth_tag"])), 16)
        self.assertEqual(envelope["employee_id"], "emp_004")
        self.assertIn("timestamp", envelope)
        self.assertNotIn("secret", envelope["ciphertext"])

    def test_fresh_iv_per_call(self):
        first = self.guard.encrypt("same", "emp_004")
        second = self.guard.encrypt("same", "emp_004")
        self.assertNotEqual(first["iv"], second["iv"])
        self.assertNotEqual(first["ciphertext"], second["ciphertext"])

    def test_tampered_ciphertext(self):
        envelope = self.guard.encrypt("payload", "emp_004")
        flipped = "%02x" % (int(envelope["ciphertext"][:2], 16) ^ 0x01)
        envelope["ciphertext"] = flipped + envelope["ciphertext"][2:]
        with self.assertRaises(DecryptionError):
            self.guard.decrypt(envelope, "emp_004")

    def test_tampered_tag(self):
        envelope = self.guard.encrypt("payload", "emp_004")
        envelope["auth_tag"] = "00" * 16
        with self.assertRaises(DecryptionError):
            self.guard.decrypt(envelope, "emp_004")

    def test_wrong_employee(self):
        envelope = self.guard.encrypt("payload", "emp_004")
        with self.assertRaises(DecryptionError):
            self.guard.decrypt(envelope, "emp_005")

        # Relabelling the envelope does not help: the key and AAD differ.
        envelope["employee_id"] = "emp_005"
        with self.assertRaises(DecryptionError):
            self.guard.decrypt(envelope, "emp_005")

    def test_wrong_master_key(self):
        envelope = self.guard.encrypt("payload", "emp_004")
        other = ConfidentialityGuard(bytes(32))
        with self.assertRaises(DecryptionError):
            other.decrypt(envelope, "emp_004")

    def test_malformed_envelope(self):
        with self.assertRaises(DecryptionError):
            self.guard.decrypt({"ciphertext": "zz"}, "emp_004")
        envelope = self.guard.encrypt("payload", "emp_004")
        envelope["iv"] = "not-hex"
        with self.assertRaises(DecryptionError):
            self.guard.decrypt(envelope, "emp_004")

    def test_fields(self):
        record = {"content": "text", "context": {"a": 1}, "metadata": {"importance": 5}}
        sealed = self.guard.encrypt_fields(record, "emp_004")
        self.assertTrue(is_envelope(sealed["content"]))
        self.assertTrue(is_envelope(sealed["context"]))
        self.assertEqual(sealed["metadata"], {"importance": 5})
        self.assertEqual(self.guard.decrypt_fields(sealed, "emp_004"), record)
        self.assertEqual(record["content"], "text")

    def test_disabled_passthrough(self):
        guard = ConfidentialityGuard(enabled=False)
        record = {"content": "text", "context": {}}
        self.assertEqual(guard.encrypt_fields(record, "emp_004"), record)

        sealed = self.guard.encrypt_fields(record, "emp_004")
        with self.assertRaises(DecryptionError):
            guard.decrypt_fields(sealed, "emp_004")

    def test_key_required(self):
        with self.assertRaises(EncryptionError):
            ConfidentialityGuard(None)
        with self.assertRaises(EncryptionError):
            ConfidentialityGuard(b"short")


if __name__ == '__main__':
    unittest.main()
