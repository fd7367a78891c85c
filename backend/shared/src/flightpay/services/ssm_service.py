"""SSM Parameter Store access for payment provider secrets.

Secrets live under /flightpay/{environment}/{provider}/{name}, for example
/flightpay/dev/stripe/webhook_secret or /flightpay/prod/paymob/hmac_secret.
"""

import logging
from functools import lru_cache
from typing import ClassVar

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

SECRET_PATH_ROOT = "/flightpay"


def provider_secret_path(environment: str, provider: str, name: str) -> str:
    """Build the parameter path of a provider secret."""
    return f"{SECRET_PATH_ROOT}/{environment}/{provider}/{name}"


class SSMServiceError(Exception):
    """A secret could not be read from Parameter Store."""


class SSMService:
    """Cached reader for SecureString parameters.

    Values are cached for the life of the process; rotating a provider
    secret needs a restart (or a fresh Lambda container).
    """

    _instance: ClassVar["SSMService | None"] = None
    _cache: ClassVar[dict[str, str]] = {}

    def __init__(self) -> None:
        self._client = boto3.client("ssm")

    @classmethod
    def get_instance(cls) -> "SSMService":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def get_parameter(self, name: str, *, use_cache: bool = True) -> str:
        """Read and decrypt a parameter.

        Args:
            name: Full parameter path, see provider_secret_path
            use_cache: Return a previously read value if there is one

        Raises:
            SSMServiceError: If the parameter is missing or unreadable.
        """
        if use_cache and name in self._cache:
            return self._cache[name]

        try:
            response = self._client.get_parameter(Name=name, WithDecryption=True)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "Unknown")
            logger.error("Reading SSM parameter %s failed with %s", name, code)
            if code == "ParameterNotFound":
                raise SSMServiceError(f"SSM parameter not found: {name}") from e
            if code == "AccessDeniedException":
                raise SSMServiceError(f"No ssm:GetParameter permission for {name}") from e
            raise SSMServiceError(f"Failed to read SSM parameter {name}: {e}") from e

        value: str = response["Parameter"]["Value"]
        self._cache[name] = value
        logger.info("Loaded secret %s", name)
        return value


@lru_cache(maxsize=1)
def get_ssm_service() -> SSMService:
    return SSMService.get_instance()
