"""Solana wallet: keypair loading, owned token balances, ATA derivation.

Private key is loaded ONCE at startup and never logged or exposed.
Only the public key is shown in logs and __repr__.
"""

from __future__ import annotations

from loguru import logger
from solders.keypair import Keypair  # type: ignore[import-untyped]
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from src.parsers.raydium.client import SolanaRpcClient
from src.parsers.raydium.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID
from src.sniper.errors import RpcError

_TOKEN_PROGRAM = Pubkey.from_string(TOKEN_PROGRAM_ID)
_ATA_PROGRAM = Pubkey.from_string(ASSOCIATED_TOKEN_PROGRAM_ID)


class SolanaWallet:
    """Signing keypair plus the balance queries a campaign needs.

    Security: private key is only accessible via .keypair property.
    """

    def __init__(self, private_key_base58: str, rpc: SolanaRpcClient) -> None:
        if not private_key_base58:
            raise ValueError("Wallet private key is empty")

        self._keypair = Keypair.from_base58_string(private_key_base58)
        self._rpc = rpc
        logger.info(f"[WALLET] Loaded wallet: {self.pubkey_str}")

    def __repr__(self) -> str:
        return f"SolanaWallet(pubkey={self.pubkey_str})"

    @property
    def pubkey(self) -> Pubkey:
        return self._keypair.pubkey()

    @property
    def pubkey_str(self) -> str:
        return str(self._keypair.pubkey())

    @property
    def keypair(self) -> Keypair:
        return self._keypair

    async def get_owned_token_amount(self, mint: str) -> int:
        """Raw amount of ``mint`` held across all of the owner's token accounts.

        Returns 0 when the owner has no account for the mint. RPC failures
        propagate so a sell is never sized from a guessed balance.
        """
        accounts = await self._rpc.get_token_accounts_by_owner(self.pubkey_str, mint)
        total = 0
        for account in accounts:
            try:
                token_amount = account["account"]["data"]["parsed"]["info"]["tokenAmount"]
                total += int(token_amount.get("amount", "0"))
            except (KeyError, TypeError, ValueError) as e:
                raise RpcError(f"Unparseable token account for {mint[:12]}: {e}") from e
        logger.debug(f"[WALLET] Balance {mint[:12]}: {total} across {len(accounts)} account(s)")
        return total

    def get_ata_address(self, mint_str: str) -> Pubkey:
        """Derive Associated Token Account address for a mint."""
        mint = Pubkey.from_string(mint_str)
        ata, _bump = Pubkey.find_program_address(
            [bytes(self.pubkey), bytes(_TOKEN_PROGRAM), bytes(mint)],
            _ATA_PROGRAM,
        )
        return ata
