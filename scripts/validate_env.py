#!/usr/bin/env python3
"""
Validate environment configuration before deployment.
Checks for required secrets, database & redis connectivity, and the chain endpoints.
Exit code 0 = OK, 1 = problems detected.
"""
import sys
import logging
from typing import List

import httpx

from usdt_billing.config import Settings

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

class EnvironmentValidator:
    """Validates environment configuration for production deployment."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.errors: List[str] = []
        self.warnings: List[str] = []
        self.info: List[str] = []

    def validate_all(self, check_connectivity: bool = True) -> bool:
        """Run all validation checks."""
        logger.info("Starting environment validation...")

        self.validate_required_settings()
        self.validate_jwt_configuration()
        if check_connectivity:
            self.validate_database_connection()
            self.validate_redis_connection()
            self.validate_chain_endpoints()

        self.print_results()
        return len(self.errors) == 0

    def validate_required_settings(self):
        """Secrets and addresses with no usable default."""
        s = self.settings
        if not s.tron_key_encryption_secret:
            self.errors.append("Missing required variable TRON_KEY_ENCRYPTION_SECRET: deposit key encryption secret")
        elif len(s.tron_key_encryption_secret) < 16:
            self.warnings.append("TRON_KEY_ENCRYPTION_SECRET seems too short (< 16 characters)")
        if not (s.merchant_bsc_address or s.merchant_wallet_address):
            self.errors.append("Missing required variable MERCHANT_BSC_ADDRESS: BEP20 payment recipient")
        if not s.tron_api_key:
            self.warnings.append("TRON_API_KEY not set: TronGrid requests will be heavily rate limited")

    def validate_jwt_configuration(self):
        """Validate JWT configuration."""
        jwt_secret = self.settings.jwt_secret
        if len(jwt_secret) < 32:
            self.errors.append("JWT_SECRET must be at least 32 characters for security")
        elif jwt_secret in ["your-secret-key", "changeme", "change-me", "secret"]:
            self.errors.append("JWT_SECRET appears to be a default/example value")
        else:
            self.info.append(f"JWT_SECRET length: {len(jwt_secret)} characters")
        if self.settings.jwt_algorithm not in ["HS256", "HS384", "HS512"]:
            self.warnings.append(f"JWT_ALGORITHM '{self.settings.jwt_algorithm}' may not be supported")

    def validate_database_connection(self):
        """Test database connectivity."""
        try:
            from sqlalchemy import create_engine, text
            engine = create_engine(self.settings.database_url, pool_pre_ping=True)
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            self.info.append(f"Database connection successful ({engine.dialect.name})")
            if engine.dialect.name == "sqlite":
                self.warnings.append("SQLite does not support row locks; use PostgreSQL in production")
        except Exception as e:
            self.errors.append(f"Database connection failed: {str(e)}")

    def validate_redis_connection(self):
        """Test Redis connectivity. Only rate limiting depends on it."""
        try:
            import redis  # type: ignore
            client = redis.from_url(self.settings.redis_url, decode_responses=True)
            client.ping()
            self.info.append("Redis connection successful")
        except Exception as e:
            self.warnings.append(f"Redis connection failed, rate limiting disabled: {str(e)}")

    def validate_chain_endpoints(self):
        """Best-effort reachability of the BSC RPC and TronGrid."""
        timeout = self.settings.chain_http_timeout_seconds
        try:
            resp = httpx.post(
                self.settings.bsc_rpc_url,
                json={"jsonrpc": "2.0", "id": 1, "method": "eth_chainId", "params": []},
                timeout=timeout,
            )
            chain_id = int(resp.json()["result"], 16)
            if chain_id != self.settings.bsc_chain_id:
                self.errors.append(f"BSC RPC reports chain id {chain_id}, expected {self.settings.bsc_chain_id}")
            else:
                self.info.append(f"BSC RPC reachable, chain id {chain_id}")
        except Exception as e:
            self.errors.append(f"BSC RPC check failed: {str(e)}")

        try:
            headers = {"TRON-PRO-API-KEY": self.settings.tron_api_key} if self.settings.tron_api_key else {}
            resp = httpx.get(f"{self.settings.tron_full_host.rstrip('/')}/wallet/getnowblock", headers=headers, timeout=timeout)
            if resp.status_code == 200:
                self.info.append("TronGrid reachable")
            else:
                self.errors.append(f"TronGrid returned HTTP {resp.status_code}")
        except Exception as e:
            self.errors.append(f"TronGrid check failed: {str(e)}")

    def print_results(self):
        print("\n===== Environment Validation Report =====\n")
        for title, messages in (("Info", self.info), ("Warnings", self.warnings), ("Errors", self.errors)):
            if messages:
                print(f"{title}:")
                for msg in messages:
                    print(f"  - {msg}")
                print("")
        overall = "PASS" if not self.errors else "FAIL"
        print(f"Overall: {overall}")
        print("")


def main() -> int:
    validator = EnvironmentValidator(Settings())
    ok = validator.validate_all()
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
