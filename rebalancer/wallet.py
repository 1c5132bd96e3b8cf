# rebalancer/wallet.py
import hashlib
import json
import os
import unicodedata
from typing import Optional

from solders.keypair import Keypair

from .exceptions import WalletError

DEFAULT_KEYPAIR_PATH = os.path.join(os.path.expanduser("~"), ".config", "solana", "id.json")
DEFAULT_DERIVATION_PATH = "m/44'/501'/0'/0'"


def load_keypair_from_file(path: str) -> Keypair:
    """
    Loads a solana-keygen JSON file (a list of 64 secret key bytes).
    """
    try:
        with open(path, "r", encoding="utf8") as f:
            secret = json.load(f)
        return Keypair.from_bytes(bytes(secret))
    except (OSError, ValueError, TypeError) as e:
        raise WalletError(f"could not load keypair from {path}: {e}") from e


def load_keypair_from_base58(secret: str) -> Keypair:
    try:
        return Keypair.from_base58_string(secret.strip())
    except ValueError as e:
        raise WalletError(f"invalid base58 private key: {e}") from e


def mnemonic_to_seed(mnemonic: str, passphrase: str = "") -> bytes:
    """BIP-39 seed: PBKDF2-HMAC-SHA512, 2048 rounds, salt 'mnemonic' + passphrase."""
    words = unicodedata.normalize("NFKD", " ".join(mnemonic.split()))
    salt = unicodedata.normalize("NFKD", "mnemonic" + passphrase)
    return hashlib.pbkdf2_hmac("sha512", words.encode("utf8"), salt.encode("utf8"), 2048)


def load_keypair_from_mnemonic(mnemonic: str, derivation_path: str = DEFAULT_DERIVATION_PATH,
                               passphrase: str = "") -> Keypair:
    try:
        seed = mnemonic_to_seed(mnemonic, passphrase)
        return Keypair.from_seed_and_derivation_path(seed, derivation_path)
    except ValueError as e:
        raise WalletError(f"could not derive keypair at {derivation_path}: {e}") from e


def load_keypair(keypair_path: Optional[str] = None, private_key: Optional[str] = None,
                 mnemonic: Optional[str] = None, derivation_path: Optional[str] = None) -> Keypair:
    """
    Picks the key source in order: mnemonic, base58 private key, keypair file.
    """
    if mnemonic:
        return load_keypair_from_mnemonic(mnemonic, derivation_path or DEFAULT_DERIVATION_PATH)
    if private_key:
        return load_keypair_from_base58(private_key)
    return load_keypair_from_file(keypair_path or DEFAULT_KEYPAIR_PATH)
