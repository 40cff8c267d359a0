import asyncio
import sys
import uuid
import click
import secrets
import base64
import jwt
import requests
from cryptography.fernet import InvalidToken
from loguru import logger
from core.batch import DEFAULT_DECIMALS, parse_batch_file, split_batches
from core.config import setting
from core.errors import BatchValidationError, ConfigurationError, DistributionError
from core.utils import (
    decrypt_private_key,
    encrypt_private_key,
    get_distributor,
    resolve_approve_amount,
)

EXIT_OK = 0
EXIT_INVALID = 2
EXIT_APPROVE_FAILED = 3
EXIT_BULK_SEND_FAILED = 4

STEP_EXIT_CODES = {
    "approve": EXIT_APPROVE_FAILED,
    "distribute": EXIT_BULK_SEND_FAILED,
}


def create_jwt_token():
    """Create a single-use JWT token for the distribution API."""
    payload = {
        "sub": "cli",
        "jti": str(uuid.uuid4()),
        "exp": 9999999999
    }
    token = jwt.encode(payload, setting.JWT_SECRET_KEY, algorithm=setting.JWT_ALGORITHM)
    return token


def unlock_signing_key(password: str | None):
    """Decrypt CIPHER_TEXT into the settings unless PRIVATE_KEY is set."""
    if setting.private_key:
        return
    if not setting.cipher_text:
        raise ConfigurationError("Set PRIVATE_KEY or CIPHER_TEXT")
    if password is None:
        password = click.prompt("Password", hide_input=True)
    try:
        setting.decrypted_private_key = decrypt_private_key(setting.cipher_text, password)
    except InvalidToken:
        raise ConfigurationError("Failed to decrypt cipher text: wrong password?")


async def run_distribution(filepath: str, approve_amount: str | None) -> int:
    """Scale the reward file by the token's own decimals, then pay it batch by batch."""
    distributor = await get_distributor()
    decimals = await distributor.token_decimals()
    receivers, amounts = parse_batch_file(filepath, decimals)
    batches = split_batches(receivers, amounts, setting.max_batch_size)
    approve_units = await resolve_approve_amount(distributor, approve_amount)

    for index, batch in enumerate(batches, start=1):
        logger.info(f"Batch {index}/{len(batches)}: {len(batch)} receivers, total {batch.total}")
        report = await distributor.run(batch, approve_units)
        click.echo(report.summary())
        if not report.success:
            logger.error(f"Stopping after batch {index}/{len(batches)}")
            return STEP_EXIT_CODES.get(report.failed_step, 1)
    return EXIT_OK


@click.group()
def cli():
    pass

@cli.command()
@click.option('--length', default=32, help='Length of the generated JWT secret key')
def generate_jwt_secret(length):
    """Generate a secure random string suitable for a JWT secret key."""
    random_bytes = secrets.token_bytes(length)
    jwt_secret = base64.b64encode(random_bytes).decode('utf-8')

    click.echo(f"JWT_SECRET_KEY={jwt_secret}")

    return jwt_secret

@cli.command()
@click.option('--private-key', type=str, prompt="Private key", hide_input=True, help='Signing private key')
@click.option('--password', type=str, prompt="Password to encrypt the private key", hide_input=True, help='Password for the cipher text')
def generate_cipher_text(private_key: str, password: str):
    """Encrypt a signing key into CIPHER_TEXT."""
    cipher_text = encrypt_private_key(private_key, password)

    click.echo(f"CIPHER_TEXT={cipher_text}")

    return cipher_text

@cli.command()
@click.option('--file', 'filepath', type=click.Path(exists=True, dir_okay=False), required=True, help='CSV or JSON reward file')
@click.option('--decimals', type=int, default=DEFAULT_DECIMALS, show_default=True, help='Token decimals')
def validate(filepath: str, decimals: int):
    """Validate a reward file without touching the chain."""
    try:
        receivers, amounts = parse_batch_file(filepath, decimals)
        batches = split_batches(receivers, amounts, setting.max_batch_size)
    except BatchValidationError as exc:
        click.echo(f"Invalid reward file: {exc}")
        sys.exit(EXIT_INVALID)

    click.echo(
        f"{len(receivers)} receivers in {len(batches)} batch(es), total {sum(amounts)} base units"
    )

@cli.command()
@click.argument('addresses', nargs=-1, required=True)
@click.option('--password', type=str, default=None, help='Password for CIPHER_TEXT')
def balances(addresses, password):
    """Print reward token balances."""
    async def read():
        distributor = await get_distributor()
        return await distributor.inspect_balances(addresses)

    try:
        unlock_signing_key(password)
        readings = asyncio.run(read())
    except DistributionError as exc:
        click.echo(str(exc))
        sys.exit(EXIT_INVALID)

    for reading in readings:
        click.echo(f"{reading.address} {reading.balance if reading.ok else 'ERROR: ' + reading.error}")

@cli.command()
@click.option('--file', 'filepath', type=click.Path(exists=True, dir_okay=False), required=True, help='CSV or JSON reward file')
@click.option('--password', type=str, default=None, help='Password for CIPHER_TEXT')
@click.option('--approve-amount', type=str, default=None, help='Human token amount to approve (default: each batch total)')
def distribute(filepath: str, password: str | None, approve_amount: str | None):
    """Approve the bulk sender and distribute rewards from a file."""
    try:
        unlock_signing_key(password)
        code = asyncio.run(run_distribution(filepath, approve_amount or setting.approve_amount))
    except DistributionError as exc:
        click.echo(f"Error: {exc}")
        sys.exit(EXIT_INVALID)

    sys.exit(code)

@cli.command()
@click.option('--file', 'filepath', type=click.Path(exists=True, dir_okay=False), required=True, help='CSV or JSON reward file')
@click.option('--decimals', type=int, default=DEFAULT_DECIMALS, show_default=True, help='Token decimals')
@click.option('--server-url', default="http://localhost:8000", show_default=True, help='Distribution API')
def request_distribution(filepath: str, decimals: int, server_url: str):
    """Send a reward file to the distribution API."""
    try:
        receivers, amounts = parse_batch_file(filepath, decimals)
    except BatchValidationError as exc:
        click.echo(f"Invalid reward file: {exc}")
        sys.exit(EXIT_INVALID)

    response = requests.post(
        f"{server_url}/api/v1/distributions",
        json={
            "transaction_id": str(uuid.uuid4()),
            "receivers": receivers,
            "amounts": amounts,
        },
        headers={"Authorization": f"Bearer {create_jwt_token()}"},
    )
    click.echo(response.json())

if __name__ == "__main__":
    cli()
