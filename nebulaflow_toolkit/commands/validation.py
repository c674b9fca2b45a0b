from pathlib import Path
from typing import Optional

from eth_utils import is_address, to_checksum_address


def validate_eth_address(address: str, param_name: str = "address") -> str:
    """Validate and return checksum ethereum address"""
    if not address or not isinstance(address, str):
        raise ValueError(
            f"Invalid {param_name}: address must be a non-empty string"
        )
    if not is_address(address):
        raise ValueError(
            f"Invalid {param_name}: {address} is not a valid Ethereum address"
        )
    return to_checksum_address(address)


def validate_cache_dir(cache_dir: Optional[str]) -> Optional[str]:
    """Validate that a cache directory path isn't an existing file"""
    if cache_dir is None:
        return None
    path = Path(cache_dir)
    if path.exists() and not path.is_dir():
        raise ValueError(f"Invalid cache-dir: {cache_dir} is not a directory")
    return str(path)
