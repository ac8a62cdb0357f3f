import re

# Ethereum address regex
ETH_ADDRESS_REGEX = re.compile(r"^0x[a-fA-F0-9]{40}$")


def validate_eth_address(address: str) -> str:
    """Validate Ethereum address format"""
    if not address:
        raise ValueError("Address cannot be empty")

    address = address.strip()

    if not ETH_ADDRESS_REGEX.match(address):
        raise ValueError(f"Invalid Ethereum address format: {address}")

    return address


def normalize_address(address: str) -> str:
    """Validated, lower-cased address used as the leaderboard key."""
    return validate_eth_address(address).lower()


def validate_limit(value: int, max_limit: int = 1000) -> int:
    """Clamp a pagination limit into [1, max_limit]"""
    if value < 1:
        return 1
    if value > max_limit:
        return max_limit
    return value
