"""SolanaLedger: concrete implementation of LedgerGateway on solana-py.

Reads use jsonParsed RPC responses converted to plain dicts; writes are
compiled into v0 transactions paid by the master wallet, sent raw and
confirmed at the configured commitment. Expired blockhashes, unconfirmed
transactions and rejected sends surface as TransientLedgerError so the
engine can retry the whole operation.
"""

import json
import logging
from typing import Any

from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.core import (
    RPCException,
    TransactionExpiredBlockheightExceededError,
    UnconfirmedTxError,
)
from solana.rpc.types import TxOpts
from solders.compute_budget import set_compute_unit_price
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import (
    CreateAccountParams,
    TransferParams,
    create_account,
    transfer,
)
from solders.transaction import VersionedTransaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    BurnParams,
    InitializeMintParams,
    MintToParams,
    burn,
    create_associated_token_account,
    create_idempotent_associated_token_account,
    get_associated_token_address,
    initialize_mint,
    mint_to,
)

from config.settings import settings
from src.ou_chain.domain.keypairs import decode_keypair
from src.ou_chain.domain.models import GameAccounts, SolTransfer, TokenTransfer
from src.ou_common.errors import TransactionSignatureNotExists, TransientLedgerError

logger = logging.getLogger(__name__)

SYSTEM_PROGRAM = "11111111111111111111111111111111"
MEMO_PROGRAM_ID = Pubkey.from_string("MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr")
CLAIM_TOKEN_DECIMALS = 9
_MINT_SIZE = 82
_CREATE_PRIORITY_MICRO_LAMPORTS = 100_000
_SETTLE_PRIORITY_MICRO_LAMPORTS = 50_000

_TRANSIENT_ERRORS = (
    TransactionExpiredBlockheightExceededError,
    UnconfirmedTxError,
    RPCException,
    SolanaRpcException,
)


def _memo(message: str) -> Instruction:
    return Instruction(MEMO_PROGRAM_ID, message.encode(), [])


def _instructions(parsed_tx: dict[str, Any]) -> list[dict[str, Any]]:
    return parsed_tx["transaction"]["message"]["instructions"]


def _token_account_index(parsed_tx: dict[str, Any]) -> dict[str, dict[str, str]]:
    """Map token account address -> {owner, mint} from pre/post token balances."""
    keys = parsed_tx["transaction"]["message"]["accountKeys"]
    meta = parsed_tx.get("meta") or {}
    index: dict[str, dict[str, str]] = {}
    for balance in (meta.get("preTokenBalances") or []) + (meta.get("postTokenBalances") or []):
        key = keys[balance["accountIndex"]]
        address = key["pubkey"] if isinstance(key, dict) else key
        index[address] = {"owner": balance.get("owner"), "mint": balance.get("mint")}
    return index


def _token_amount(info: dict[str, Any]) -> int:
    if "tokenAmount" in info:
        return int(info["tokenAmount"]["amount"])
    return int(info.get("amount", 0))


def parse_sol_transfers(parsed_tx: dict[str, Any]) -> list[SolTransfer]:
    transfers: list[SolTransfer] = []
    for ix in _instructions(parsed_tx):
        if ix.get("programId") != SYSTEM_PROGRAM:
            continue
        parsed = ix.get("parsed")
        if not isinstance(parsed, dict) or parsed.get("type") != "transfer":
            continue
        info = parsed["info"]
        transfers.append(
            SolTransfer(
                source=info["source"],
                destination=info["destination"],
                lamports=int(info["lamports"]),
            )
        )
    return transfers


def parse_token_transfers(parsed_tx: dict[str, Any]) -> list[TokenTransfer]:
    accounts = _token_account_index(parsed_tx)
    transfers: list[TokenTransfer] = []
    for ix in _instructions(parsed_tx):
        if ix.get("programId") != str(TOKEN_PROGRAM_ID):
            continue
        parsed = ix.get("parsed")
        if not isinstance(parsed, dict) or "transfer" not in parsed.get("type", ""):
            continue
        info = parsed["info"]
        source_account = accounts.get(info["source"], {})
        owner = (
            source_account.get("owner")
            or info.get("authority")
            or info.get("multisigAuthority")
        )
        if owner is None:
            continue
        transfers.append(
            TokenTransfer(
                owner=owner,
                source=info["source"],
                destination=info["destination"],
                amount=_token_amount(info),
                mint=info.get("mint") or source_account.get("mint"),
            )
        )
    return transfers


class SolanaLedger:
    def __init__(
        self,
        client: AsyncClient,
        master: Keypair,
        commitment: str = "confirmed",
    ) -> None:
        self._client = client
        self._master = master
        self._commitment = Commitment(commitment)

    @property
    def master_address(self) -> str:
        return str(self._master.pubkey())

    async def close(self) -> None:
        await self._client.close()

    def associated_token_address(self, owner: str, mint: str) -> str:
        return str(
            get_associated_token_address(Pubkey.from_string(owner), Pubkey.from_string(mint))
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _get_parsed_transaction(self, signature: str) -> dict[str, Any]:
        try:
            resp = await self._client.get_transaction(
                Signature.from_string(signature),
                encoding="jsonParsed",
                commitment=self._commitment,
                max_supported_transaction_version=0,
            )
        except (ValueError, RPCException, SolanaRpcException) as e:
            raise TransactionSignatureNotExists(signature) from e
        result = json.loads(resp.to_json()).get("result")
        if not result:
            raise TransactionSignatureNotExists(signature)
        return result

    async def get_sol_transfers(self, signature: str) -> list[SolTransfer]:
        return parse_sol_transfers(await self._get_parsed_transaction(signature))

    async def get_token_transfers(self, signature: str) -> list[TokenTransfer]:
        return parse_token_transfers(await self._get_parsed_transaction(signature))

    async def find_transfer_source(
        self, signature: str, destination: str, min_lamports: int
    ) -> SolTransfer | None:
        for t in await self.get_sol_transfers(signature):
            if t.destination == destination:
                return t if t.lamports >= min_lamports else None
        return None

    async def get_signatures_for_address(
        self, address: str, until: str | None = None
    ) -> list[str]:
        resp = await self._client.get_signatures_for_address(
            Pubkey.from_string(address),
            until=Signature.from_string(until) if until else None,
            commitment=self._commitment,
        )
        return [str(s.signature) for s in resp.value if s.err is None]

    async def get_balance(self, address: str) -> int:
        resp = await self._client.get_balance(Pubkey.from_string(address), self._commitment)
        return resp.value

    async def get_token_account_balance(self, address: str) -> int:
        try:
            resp = await self._client.get_token_account_balance(
                Pubkey.from_string(address), self._commitment
            )
        except RPCException:
            # account not created yet
            return 0
        return int(resp.value.amount)

    async def validate_burn(
        self, signature: str, owner: str, mint: str, amount: int
    ) -> bool:
        parsed_tx = await self._get_parsed_transaction(signature)
        owner_account = self.associated_token_address(owner, mint)
        accounts = _token_account_index(parsed_tx)
        for ix in _instructions(parsed_tx):
            if ix.get("programId") != str(TOKEN_PROGRAM_ID):
                continue
            parsed = ix.get("parsed")
            if not isinstance(parsed, dict):
                continue
            kind = parsed.get("type", "")
            info = parsed["info"]
            if kind in ("burn", "burnChecked"):
                account = info.get("account")
            elif "transfer" in kind:
                account = info.get("source")
            else:
                continue
            if account != owner_account:
                continue
            ix_mint = info.get("mint") or accounts.get(account, {}).get("mint")
            if ix_mint == mint and _token_amount(info) == amount:
                return True
        return False

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _send(self, instructions: list[Instruction], signers: list[Keypair], label: str) -> str:
        unique: dict[Pubkey, Keypair] = {}
        for kp in [self._master, *signers]:
            unique.setdefault(kp.pubkey(), kp)
        try:
            latest = await self._client.get_latest_blockhash(self._commitment)
            message = MessageV0.try_compile(
                self._master.pubkey(), instructions, [], latest.value.blockhash
            )
            tx = VersionedTransaction(message, list(unique.values()))
            sent = await self._client.send_raw_transaction(
                bytes(tx), opts=TxOpts(preflight_commitment=self._commitment)
            )
            await self._client.confirm_transaction(
                sent.value,
                self._commitment,
                last_valid_block_height=latest.value.last_valid_block_height,
            )
        except _TRANSIENT_ERRORS as e:
            logger.warning("[ledger] %s failed: %s", label, e)
            raise TransientLedgerError(f"{label}: {e}") from e
        signature = str(sent.value)
        logger.info("[ledger] %s confirmed: %s", label, signature)
        return signature

    async def create_game_accounts(self) -> GameAccounts:
        over_pot, under_pot = Keypair(), Keypair()
        over_mint, under_mint = Keypair(), Keypair()
        master = self._master.pubkey()

        pot_rent = (await self._client.get_minimum_balance_for_rent_exemption(0)).value
        mint_rent = (await self._client.get_minimum_balance_for_rent_exemption(_MINT_SIZE)).value

        instructions: list[Instruction] = [set_compute_unit_price(_CREATE_PRIORITY_MICRO_LAMPORTS)]
        for pot in (over_pot, under_pot):
            instructions.append(
                transfer(TransferParams(from_pubkey=master, to_pubkey=pot.pubkey(), lamports=pot_rent))
            )
        for mint in (over_mint, under_mint):
            instructions.append(
                create_account(
                    CreateAccountParams(
                        from_pubkey=master,
                        to_pubkey=mint.pubkey(),
                        lamports=mint_rent,
                        space=_MINT_SIZE,
                        owner=TOKEN_PROGRAM_ID,
                    )
                )
            )
            instructions.append(
                initialize_mint(
                    InitializeMintParams(
                        decimals=CLAIM_TOKEN_DECIMALS,
                        program_id=TOKEN_PROGRAM_ID,
                        mint=mint.pubkey(),
                        mint_authority=master,
                        freeze_authority=master,
                    )
                )
            )
        for pot, mint in ((over_pot, over_mint), (under_pot, under_mint)):
            instructions.append(create_associated_token_account(master, pot.pubkey(), mint.pubkey()))

        signature = await self._send(instructions, [over_mint, under_mint], "create_game_accounts")
        return GameAccounts(
            over_pot=over_pot,
            under_pot=under_pot,
            over_mint=over_mint,
            under_mint=under_mint,
            signature=signature,
        )

    async def mint_claim_tokens(self, owner: str, mint: Keypair, amount: int) -> str:
        master = self._master.pubkey()
        owner_key = Pubkey.from_string(owner)
        destination = get_associated_token_address(owner_key, mint.pubkey())
        instructions = [
            create_idempotent_associated_token_account(master, owner_key, mint.pubkey()),
            mint_to(
                MintToParams(
                    program_id=TOKEN_PROGRAM_ID,
                    mint=mint.pubkey(),
                    dest=destination,
                    mint_authority=master,
                    amount=amount,
                )
            ),
        ]
        return await self._send(instructions, [], "mint_claim_tokens")

    async def pay_out_sale(
        self,
        source_pot: Keypair,
        target_pot: str,
        owner: str,
        redistribution: int,
        payout: int,
        memo: str,
    ) -> str:
        source = source_pot.pubkey()
        instructions: list[Instruction] = []
        if redistribution > 0:
            instructions.append(
                transfer(
                    TransferParams(
                        from_pubkey=source,
                        to_pubkey=Pubkey.from_string(target_pot),
                        lamports=redistribution,
                    )
                )
            )
        if payout > 0:
            instructions.append(
                transfer(
                    TransferParams(
                        from_pubkey=source, to_pubkey=Pubkey.from_string(owner), lamports=payout
                    )
                )
            )
        instructions.append(_memo(memo))
        return await self._send(instructions, [source_pot], "pay_out_sale")

    async def transfer_from_pot(
        self, pot: Keypair, destination: str, lamports: int, memo: str
    ) -> str:
        instructions = [
            transfer(
                TransferParams(
                    from_pubkey=pot.pubkey(),
                    to_pubkey=Pubkey.from_string(destination),
                    lamports=lamports,
                )
            ),
            _memo(memo),
        ]
        return await self._send(instructions, [pot], "transfer_from_pot")

    async def merge_pots_and_burn(
        self,
        winner_pot: Keypair,
        winner_mint: str,
        loser_pot: Keypair,
        loser_mint: str,
        memo: str,
    ) -> str:
        instructions: list[Instruction] = [set_compute_unit_price(_SETTLE_PRIORITY_MICRO_LAMPORTS)]
        for pot, mint in ((winner_pot, winner_mint), (loser_pot, loser_mint)):
            account = self.associated_token_address(str(pot.pubkey()), mint)
            held = await self.get_token_account_balance(account)
            if held > 0:
                instructions.append(
                    burn(
                        BurnParams(
                            program_id=TOKEN_PROGRAM_ID,
                            account=Pubkey.from_string(account),
                            mint=Pubkey.from_string(mint),
                            owner=pot.pubkey(),
                            amount=held,
                        )
                    )
                )
        loser_lamports = await self.get_balance(str(loser_pot.pubkey()))
        if loser_lamports > 0:
            instructions.append(
                transfer(
                    TransferParams(
                        from_pubkey=loser_pot.pubkey(),
                        to_pubkey=winner_pot.pubkey(),
                        lamports=loser_lamports,
                    )
                )
            )
        instructions.append(_memo(memo))
        return await self._send(instructions, [winner_pot, loser_pot], "merge_pots_and_burn")


def build_ledger() -> SolanaLedger:
    """Build the ledger from settings; the master wallet secret is mandatory here."""
    if not settings.MASTER_WALLET_SECRET:
        raise ValueError("MASTER_WALLET_SECRET must be set to run the ledger adapter")
    return SolanaLedger(
        client=AsyncClient(settings.SOLANA_RPC_URL),
        master=decode_keypair(settings.MASTER_WALLET_SECRET),
        commitment=settings.SOLANA_COMMITMENT,
    )
