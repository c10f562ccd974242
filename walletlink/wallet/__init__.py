"""
Wallet module: signers and active wallet sources.

This module provides:
- WalletSigner / LocalAccountSigner / PromptSigner: the signing capability
- load_signer: build a local signer from (optionally encrypted) env keys
- ActiveWalletSource implementations and merge_active_wallets
"""

from .factory import load_signer
from .security import (
    ENCRYPTED_PREFIX,
    DecryptionError,
    decrypt_private_key,
    encrypt_private_key,
)
from .signer import LocalAccountSigner, PromptSigner, WalletSigner
from .sources import (
    ActiveWalletSource,
    ConnectedWalletSource,
    EmbeddedWalletSource,
    PasskeyWalletSource,
    merge_active_wallets,
)

__all__ = [
    # Signers
    "WalletSigner",
    "LocalAccountSigner",
    "PromptSigner",
    "load_signer",
    # Key encryption
    "encrypt_private_key",
    "decrypt_private_key",
    "DecryptionError",
    "ENCRYPTED_PREFIX",
    # Active wallets
    "ActiveWalletSource",
    "ConnectedWalletSource",
    "EmbeddedWalletSource",
    "PasskeyWalletSource",
    "merge_active_wallets",
]
