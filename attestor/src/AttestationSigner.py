"""AttestationSigner: Signs task responses with the operator key.

Signing scheme, matching the on-chain verifier:
    - digest = keccak256(abi.encodePacked(uint32 taskIndex, bytes payload))
    - signature = secp256k1 EIP-191 personal-message signature of the digest
      (65 bytes r || s || v, RFC 6979 deterministic nonce)
    - verify recovers the signer address and compares it to the claimed one

The payload is never signed directly, only its digest together with the
task index.
"""

from __future__ import annotations

import logging

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from eth_keys.exceptions import BadSignature, ValidationError
from web3 import Web3

from .KeySource import KeySource
from .Task import MAX_TASK_INDEX

logger = logging.getLogger(__name__)

SIGNATURE_LENGTH = 65


class SigningFailure(Exception):
    """Raised when a response cannot be signed."""

    pass


class AttestationSigner:
    """Deterministic signer for task responses.

    :ivar address: Checksummed operator address.
    :ivar fingerprint: First 8 hex characters of keccak256(address), safe
        to log for audit correlation.
    """

    def __init__(self, account: LocalAccount) -> None:
        self._account = account
        self.address: str = account.address
        self.fingerprint: str = Web3.keccak(hexstr=account.address).hex().removeprefix("0x")[:8]

    @classmethod
    def from_key_source(cls, source: KeySource) -> AttestationSigner:
        """Build a signer from a key source.

        The key buffer is wiped before this returns.

        :param source: Source of the operator key.
        :raises KeySourceError: If the key cannot be loaded.
        """
        with source.acquire() as key:
            account = Account.from_key(bytes(key))
        signer = cls(account)
        logger.info(
            f"Loaded operator key from {source.describe()}: "
            f"address={signer.address} fingerprint={signer.fingerprint}"
        )
        return signer

    @staticmethod
    def message_hash(task_index: int, payload: bytes) -> bytes:
        """Digest of the canonical (task index, payload) encoding.

        :raises ValueError: If the task index does not fit in uint32.
        """
        if not 0 <= task_index <= MAX_TASK_INDEX:
            raise ValueError(f"Task index {task_index} out of uint32 range")
        return bytes(Web3.solidity_keccak(["uint32", "bytes"], [task_index, payload]))

    def sign(self, task_index: int, payload: bytes) -> bytes:
        """Sign a response payload for a task.

        :param task_index: Task being answered.
        :param payload: Encoded response payload.
        :returns: 65-byte signature.
        :raises SigningFailure: If the digest or signature cannot be computed.
        """
        try:
            digest = self.message_hash(task_index, payload)
            signed = self._account.sign_message(encode_defunct(primitive=digest))
        except Exception as e:
            raise SigningFailure(f"Cannot sign task {task_index}: {type(e).__name__}") from e
        return bytes(signed.signature)

    @classmethod
    def verify(
        cls, task_index: int, payload: bytes, signature: bytes, claimed_signer: str
    ) -> bool:
        """Check that signature was produced by claimed_signer over
        (task_index, payload).
        """
        if len(signature) != SIGNATURE_LENGTH:
            return False
        try:
            digest = cls.message_hash(task_index, payload)
            recovered = Account.recover_message(
                encode_defunct(primitive=digest), signature=signature
            )
        except (BadSignature, ValidationError, ValueError, TypeError):
            return False
        return recovered.lower() == claimed_signer.lower()
