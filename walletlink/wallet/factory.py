"""
Local signer factory: encrypted key -> plaintext key, in env priority order.
"""

import getpass
import logging
import os
import re
from typing import List, Optional

from dotenv import load_dotenv
from eth_account import Account

from .security import decrypt_private_key, is_encrypted
from .signer import LocalAccountSigner

logger = logging.getLogger(__name__)

_MASTER_PASSWORD_ENV = "WALLETLINK_MASTER_PWD"
_PRIVATE_KEY_ENV_PRIORITY_OVERRIDE = "WALLETLINK_WALLET_ENV_PRIORITY"
_DEFAULT_PRIVATE_KEY_ENVS = ("WALLETLINK_PRIVATE_KEY", "PRIVATE_KEY", "EVM_PRIVATE_KEY")


def _normalize_private_key(value: str) -> str:
    key = value.strip()
    return key if key.startswith("0x") else f"0x{key}"


def _looks_like_hex_key(value: str) -> bool:
    key = value.strip()
    return bool(re.fullmatch(r"(0x)?[a-fA-F0-9]{64}", key))


def _private_key_env_priority() -> List[str]:
    """
    Env vars inspected for a local key.

    Priority can be overridden with a comma-separated WALLETLINK_WALLET_ENV_PRIORITY.
    """
    override = os.getenv(_PRIVATE_KEY_ENV_PRIORITY_OVERRIDE)
    if override:
        names = [name.strip() for name in override.split(",") if name.strip()]
        if names:
            # Preserve order while removing duplicates
            return list(dict.fromkeys(names))
    return list(_DEFAULT_PRIVATE_KEY_ENVS)


def load_signer(password: Optional[str] = None) -> LocalAccountSigner:
    """
    Build a local signer from the first usable key in the environment.

    Priority:
        1) Encrypted key (ENC:v1:...), unlocked with WALLETLINK_MASTER_PWD or a prompt
        2) Plaintext hex key
    """
    load_dotenv()

    env_priority = _private_key_env_priority()
    for env_name in env_priority:
        private_key = os.getenv(env_name)
        if not private_key:
            continue

        if is_encrypted(private_key):
            logger.info(f"Encrypted {env_name} detected; decryption required.")
            secret = password or os.environ.get(_MASTER_PASSWORD_ENV) or getpass.getpass(
                f"Enter password to decrypt {env_name}: "
            )
            account = Account.from_key(_normalize_private_key(decrypt_private_key(private_key, secret)))
            logger.info(f"Local account unlocked from {env_name}: {account.address}")
            return LocalAccountSigner(account)

        if _looks_like_hex_key(private_key):
            logger.warning(f"Using plaintext {env_name} from environment.")
            account = Account.from_key(_normalize_private_key(private_key))
            logger.info(f"Local account loaded from {env_name}: {account.address}")
            return LocalAccountSigner(account)

        logger.warning(f"{env_name} is set but is not a hex private key; skipping.")

    raise ValueError(
        "No valid signing key configured; set one of "
        f"{', '.join(env_priority)} (plain hex or ENC:v1) in your .env file."
    )
