"""KeySource: Scoped acquisition of the operator's signing key.

Every source yields the raw 32-byte secp256k1 key in a mutable buffer that
is zeroed as soon as the ``with`` block exits:

.. code-block:: python

    with FileKeySource("/run/secrets/operator.json").acquire() as key:
        account = Account.from_key(bytes(key))

Sources:
    - FileKeySource: JSON file ``{"PrivateKey": "0x..."}`` or a raw hex file
    - EnvKeySource: hex key in an environment variable
    - AppdKeySource: key generated by the ROFL appd for a key id
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import httpx

logger = logging.getLogger(__name__)

KEY_LENGTH = 32


class KeySourceError(Exception):
    """Raised when key material cannot be loaded."""

    pass


def _key_from_hex(text: str) -> bytearray:
    """Parse a hex key into a buffer of exactly KEY_LENGTH bytes.

    Longer keys are truncated to their first KEY_LENGTH bytes.

    :raises KeySourceError: If the text is not hex or too short.
    """
    text = text.strip()
    if text.startswith(("0x", "0X")):
        text = text[2:]
    try:
        buf = bytearray.fromhex(text)
    except ValueError:
        raise KeySourceError("Key material is not valid hex") from None
    if len(buf) < KEY_LENGTH:
        _wipe(buf)
        raise KeySourceError(f"Key material too short: expected {KEY_LENGTH} bytes")
    if len(buf) > KEY_LENGTH:
        del buf[KEY_LENGTH:]
    return buf


def _wipe(buf: bytearray) -> None:
    for i in range(len(buf)):
        buf[i] = 0


class KeySource(ABC):
    """Abstract source of key material."""

    @abstractmethod
    def _load(self) -> bytearray:
        """Load the key into a fresh buffer.

        :raises KeySourceError: If the key cannot be loaded.
        """
        pass

    @contextmanager
    def acquire(self) -> Iterator[bytearray]:
        """Yield the key, zeroing the buffer on exit."""
        buf = self._load()
        try:
            yield buf
        finally:
            _wipe(buf)

    def describe(self) -> str:
        """Human-readable origin of the key, without key material."""
        return type(self).__name__


class FileKeySource(KeySource):
    """Key stored in a file.

    :ivar path: Path of the key file.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _load(self) -> bytearray:
        try:
            text = self.path.read_text()
        except OSError as e:
            raise KeySourceError(f"Cannot read key file {self.path}: {e.strerror}") from None

        if text.lstrip().startswith("{"):
            try:
                text = json.loads(text)["PrivateKey"]
            except (json.JSONDecodeError, KeyError, TypeError):
                raise KeySourceError(
                    f"Key file {self.path} has no PrivateKey field"
                ) from None
        if not isinstance(text, str):
            raise KeySourceError(f"Key file {self.path} has no PrivateKey field")
        return _key_from_hex(text)

    def describe(self) -> str:
        return f"file {self.path}"


class EnvKeySource(KeySource):
    """Key held in an environment variable.

    :ivar variable: Name of the environment variable.
    """

    def __init__(self, variable: str = "OPERATOR_PRIVATE_KEY") -> None:
        self.variable = variable

    def _load(self) -> bytearray:
        value = os.environ.get(self.variable)
        if not value:
            raise KeySourceError(f"Environment variable {self.variable} is not set")
        return _key_from_hex(value)

    def describe(self) -> str:
        return f"env {self.variable}"


class AppdKeySource(KeySource):
    """Key generated by the ROFL appd for a key id.

    The appd derives the same key for the same app and key id on every
    start, so the key is requested once and never persisted.

    :ivar key_id: Key identifier passed to appd.
    :ivar url: HTTP base URL, or a Unix socket path (default: appd socket).
    :ivar timeout: Request timeout in seconds.
    """

    ROFL_SOCKET_PATH = "/run/rofl-appd.sock"
    GENERATE_PATH = "/rofl/v1/keys/generate"

    def __init__(self, key_id: str, url: str = "", timeout: float = 30.0) -> None:
        self.key_id = key_id
        self.url = url or self.ROFL_SOCKET_PATH
        self.timeout = timeout

    def _client(self) -> httpx.Client:
        if self.url.startswith("http"):
            return httpx.Client(base_url=self.url, timeout=self.timeout)
        return httpx.Client(
            base_url="http://localhost",
            transport=httpx.HTTPTransport(uds=self.url),
            timeout=self.timeout,
        )

    def _load(self) -> bytearray:
        request = {"key_id": self.key_id, "kind": "secp256k1"}
        logger.debug(f"Requesting key {self.key_id} from appd at {self.url}")
        try:
            with self._client() as client:
                response = client.post(self.GENERATE_PATH, json=request)
                response.raise_for_status()
                key = response.json()["key"]
        except httpx.HTTPError as e:
            raise KeySourceError(f"appd key request failed: {type(e).__name__}") from None
        except (ValueError, KeyError, TypeError):
            raise KeySourceError("appd response has no key field") from None
        if not isinstance(key, str):
            raise KeySourceError("appd response has no key field")
        return _key_from_hex(key)

    def describe(self) -> str:
        return f"appd key {self.key_id} via {self.url}"
