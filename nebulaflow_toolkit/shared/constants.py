"""All constants for the project"""

import os

from dotenv import load_dotenv

load_dotenv()


class LedgerConstants:
    """Wire-level constants of the activity contracts"""

    UINT256_MAX = (2**256) - 1

    # Deposit-pool contracts store type(uint256).max as "not checked in".
    # Anything in the top 256 values is treated as that marker, since some
    # contract builds encode it slightly below the exact maximum.
    NOT_CHECKED_THRESHOLD = (2**256) - 256

    ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

    # viewStatus() values
    STATUS_SCHEDULED = 0
    STATUS_ACTIVE = 1
    STATUS_SETTLED = 2


class StorageConstants:
    """Logical schema of the local record store"""

    ACTIVITIES_KEY = "nebulaflow_activities"
    PARTICIPATION_KEY_PREFIX = "nebulaflow_participation"
    SCHEMA_VERSION = 1


class GlobalConstants:
    """Global class constants for the project"""

    DEFAULT_RPC_URL = "http://127.0.0.1:8545"  # local hardhat node
    DEFAULT_CHAIN_ID = 31337

    # Latest local deployment of the ActivityRegistry
    DEFAULT_REGISTRY_ADDRESS = "0x59b670e9fA9D0A427751Af201D676719a970857b"

    DEFAULT_CACHE_DIR = ".cache/nebulaflow"
    DEFAULT_MAX_CONCURRENCY = 8
    DEFAULT_VALIDATION_TIMEOUT = 4.0  # seconds, per entry
    DEFAULT_ESCALATE_AFTER = 3  # consecutive unreachable passes

    @staticmethod
    def get_rpc_url() -> str:
        """Get the ledger RPC URL"""
        return os.getenv("NF_RPC_URL") or GlobalConstants.DEFAULT_RPC_URL

    @staticmethod
    def get_chain_id() -> int:
        """Get the ledger chain id"""
        return int(
            os.getenv("NF_CHAIN_ID") or GlobalConstants.DEFAULT_CHAIN_ID
        )

    @staticmethod
    def get_registry_address() -> str:
        """Get the ActivityRegistry address (empty string when unset)"""
        value = os.getenv("NF_REGISTRY_ADDRESS")
        if value is None:
            return GlobalConstants.DEFAULT_REGISTRY_ADDRESS
        return value.strip()

    @staticmethod
    def get_cache_dir() -> str:
        return os.getenv("NF_CACHE_DIR") or GlobalConstants.DEFAULT_CACHE_DIR

    @staticmethod
    def get_max_concurrency() -> int:
        return int(
            os.getenv("NF_MAX_CONCURRENCY")
            or GlobalConstants.DEFAULT_MAX_CONCURRENCY
        )

    @staticmethod
    def get_validation_timeout() -> float:
        return float(
            os.getenv("NF_VALIDATION_TIMEOUT")
            or GlobalConstants.DEFAULT_VALIDATION_TIMEOUT
        )

    @staticmethod
    def get_escalate_after() -> int:
        return int(
            os.getenv("NF_ESCALATE_AFTER")
            or GlobalConstants.DEFAULT_ESCALATE_AFTER
        )
