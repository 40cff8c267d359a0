import base64
import hashlib
from cryptography.fernet import Fernet
from core.batch import to_base_units
from core.chain import BulkSenderContract, ChainClient, TokenContract
from core.config import setting
from core.distributor import RewardDistributor
from loguru import logger


def get_fernet(password: str) -> Fernet:
    """Derive a Fernet cipher from a password."""
    key = hashlib.sha256(password.encode('utf-8')).digest()
    return Fernet(base64.urlsafe_b64encode(key))


def encrypt_private_key(private_key: str, password: str) -> str:
    return get_fernet(password).encrypt(private_key.encode('utf-8')).decode('utf-8')


def decrypt_private_key(cipher_text: str, password: str) -> str:
    """
    Decrypt a private key produced by encrypt_private_key.

    :param cipher_text: The Fernet token
    :param password: The password the key was encrypted with

    :return: The private key
    """
    return get_fernet(password).decrypt(cipher_text.encode('utf-8')).decode('utf-8')


async def get_chain() -> ChainClient:
    """Get the chain client"""
    if setting.chain is None:
        setting.chain = ChainClient.connect(
            setting.rpc_url,
            setting.signing_key,
            timeout=setting.tx_timeout,
            poll_latency=setting.tx_poll_latency,
        )
    return setting.chain


async def get_distributor() -> RewardDistributor:
    """Build a distributor for the configured token and bulk sender."""
    token_address, bulk_sender_address = setting.require_contracts()
    chain = await get_chain()
    logger.info(f"Token {token_address}, bulk sender {bulk_sender_address}")
    return RewardDistributor(
        chain,
        TokenContract(chain, token_address),
        BulkSenderContract(chain, bulk_sender_address),
        max_batch_size=setting.max_batch_size,
    )


async def resolve_approve_amount(distributor: RewardDistributor, amount: str | None) -> int | None:
    """Convert a human approve amount (e.g. "100000") to base units."""
    if amount is None:
        return None
    return to_base_units(amount, await distributor.token_decimals())
